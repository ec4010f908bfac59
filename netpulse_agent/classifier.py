"""
Device type classification.

Signals are tried from most to least explicit and the first match wins:
gateway flag, vendor/hostname keywords, hostname prefixes, MAC OUI blocks,
then open-port signatures.
"""

import re
from typing import Iterable, Optional

from .domain import DeviceType
from .oui import oui_prefix

# Keywords in the vendor string or hostname, checked in order.
VENDOR_PATTERNS = [
    (re.compile(r"mikrotik|routerboard", re.I), DeviceType.ROUTER),
    (re.compile(r"cisco.*switch|hp.*switch|aruba.*switch|netgear.*gs\d", re.I), DeviceType.SWITCH),
    (re.compile(r"ubiquiti|unifi|ruckus|aruba.*ap|access.?point", re.I), DeviceType.ACCESS_POINT),
    (re.compile(r"vmware|hyper-?v|proxmox|qemu|dell.*server|hp.*proliant", re.I), DeviceType.SERVER),
    (re.compile(r"synology|qnap|western.*digital.*my.*cloud", re.I), DeviceType.NAS),
    (re.compile(r"epson|brother|canon|hp.*(laser|officejet|deskjet|envy)|lexmark|xerox|ricoh", re.I), DeviceType.PRINTER),
    (re.compile(r"hikvision|dahua|axis.*comm|\bring\b|nest.*cam|arlo|wyze|reolink|amcrest", re.I), DeviceType.CAMERA),
    (re.compile(r"ipad|galaxy.*tab|kindle|fire.*hd|surface.*go", re.I), DeviceType.TABLET),
    (re.compile(r"macbook|thinkpad|latitude|elitebook|surface.*pro|surface.*laptop|ideapad|pavilion", re.I), DeviceType.LAPTOP),
    (re.compile(r"roku|chromecast|fire.*tv|apple.*tv|smart.*tv|lg.*webos|samsung.*tizen", re.I), DeviceType.IOT),
    (re.compile(r"amazon.*echo|google.*home|alexa|sonos|philips.*hue|nest.*thermostat|shelly|tuya|tasmota", re.I), DeviceType.IOT),
    (re.compile(r"apple|iphone|samsung.*galaxy|samsung.*sm-|xiaomi|huawei|oneplus|oppo|vivo|motorola|pixel", re.I), DeviceType.PHONE),
    (re.compile(r"intel|realtek|gigabyte|giga-byte|asustek|\bmsi\b|\bamd\b|nvidia", re.I), DeviceType.DESKTOP),
]

# Hostname prefixes; the prefix must end at a separator, a digit or the end of the name.
HOSTNAME_PREFIXES = [
    (re.compile(r"^(rtr|router|gw|gateway)([-_.\d]|$)", re.I), DeviceType.ROUTER),
    (re.compile(r"^(sw|switch)([-_.\d]|$)", re.I), DeviceType.SWITCH),
    (re.compile(r"^(ap|wap)([-_.\d]|$)", re.I), DeviceType.ACCESS_POINT),
    (re.compile(r"^(srv|server|dc|vm)([-_.\d]|$)", re.I), DeviceType.SERVER),
    (re.compile(r"^nas([-_.\d]|$)", re.I), DeviceType.NAS),
    (re.compile(r"^(prn|printer|npi)([-_.\da-f]|$)", re.I), DeviceType.PRINTER),
    (re.compile(r"^(cam|ipcam|nvr|dvr)([-_.\d]|$)", re.I), DeviceType.CAMERA),
    (re.compile(r"^(ipad)([-_.\d]|$)", re.I), DeviceType.TABLET),
    (re.compile(r"^(iphone|android|galaxy)([-_.\d]|$)", re.I), DeviceType.PHONE),
    (re.compile(r"^(laptop|notebook|nb)([-_.\d]|$)", re.I), DeviceType.LAPTOP),
    (re.compile(r"^(desktop|pc|ws)([-_.\d]|$)", re.I), DeviceType.DESKTOP),
]

# Manufacturer OUI blocks whose devices are overwhelmingly of one type.
OUI_TYPES = {
    "B827EB": DeviceType.IOT,  # Raspberry Pi
    "DCA632": DeviceType.IOT,
    "E45F01": DeviceType.IOT,
    "001788": DeviceType.IOT,  # Philips Hue
    "F0F0A4": DeviceType.IOT,  # Amazon
    "6854FD": DeviceType.IOT,
    "00D9D1": DeviceType.IOT,  # Sony PlayStation
    "7CBB8A": DeviceType.IOT,  # Nintendo
    "001F32": DeviceType.IOT,
    "005056": DeviceType.SERVER,  # VMware
    "000C29": DeviceType.SERVER,
    "525400": DeviceType.SERVER,  # QEMU/KVM
    "00155D": DeviceType.SERVER,  # Hyper-V
    "B4B024": DeviceType.ACCESS_POINT,  # Ubiquiti
    "245A4C": DeviceType.ACCESS_POINT,
    "687251": DeviceType.ACCESS_POINT,
    "001132": DeviceType.NAS,  # Synology
    "00089B": DeviceType.NAS,  # QNAP
    "F0DEF1": DeviceType.PRINTER,  # Epson
    "0026AB": DeviceType.PRINTER,
    "001BA9": DeviceType.PRINTER,  # Brother
    "008077": DeviceType.PRINTER,
    "30055C": DeviceType.PRINTER,
    "BCAD28": DeviceType.CAMERA,  # Hikvision
    "4419B6": DeviceType.CAMERA,
    "3CEF8C": DeviceType.CAMERA,  # Dahua
    "CC2DE0": DeviceType.ROUTER,  # MikroTik
    "000C42": DeviceType.ROUTER,
    "6C3B6B": DeviceType.ROUTER,
}

# (type, service ports, minimum number of them that must be open)
PORT_SIGNATURES = [
    (DeviceType.PRINTER, {9100, 631, 515}, 1),  # RAW, IPP, LPD
    (DeviceType.CAMERA, {554, 8554}, 1),  # RTSP
    (DeviceType.NAS, {5000, 5001, 548, 445, 2049}, 2),  # DSM, AFP, SMB, NFS
    (DeviceType.SERVER, {22, 3306, 5432, 8080, 1433, 27017, 6379}, 2),
    (DeviceType.DESKTOP, {445, 139, 3389, 548}, 2),
    (DeviceType.ROUTER, {80, 443, 8443, 53}, 2),  # admin UI + DNS forwarder
]


def match_vendor_patterns(vendor: Optional[str], hostname: Optional[str]) -> Optional[DeviceType]:
    search = " ".join(s for s in (vendor, hostname) if s)
    if not search:
        return None
    for pattern, device_type in VENDOR_PATTERNS:
        if pattern.search(search):
            return device_type
    return None


def match_hostname_prefix(hostname: Optional[str]) -> Optional[DeviceType]:
    if not hostname:
        return None
    for pattern, device_type in HOSTNAME_PREFIXES:
        if pattern.match(hostname):
            return device_type
    return None


def match_oui(mac: Optional[str]) -> Optional[DeviceType]:
    prefix = oui_prefix(mac) if mac else None
    if prefix is None:
        return None
    return OUI_TYPES.get(prefix)


def match_ports(open_ports: Optional[Iterable[int]]) -> Optional[DeviceType]:
    ports = set(open_ports or ())
    if not ports:
        return None
    for device_type, signature, min_matches in PORT_SIGNATURES:
        if len(ports & signature) >= min_matches:
            return device_type
    return None


def classify_device(
    vendor: Optional[str],
    hostname: Optional[str],
    open_ports: Optional[Iterable[int]],
    is_gateway: bool,
    mac: Optional[str] = None,
) -> DeviceType:
    if is_gateway:
        return DeviceType.ROUTER

    return (
        match_vendor_patterns(vendor, hostname)
        or match_hostname_prefix(hostname)
        or match_oui(mac)
        or match_ports(open_ports)
        or DeviceType.UNKNOWN
    )
