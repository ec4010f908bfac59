import logging
import os
import re
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Fallback table used when the IEEE registry file is missing or lacks a prefix.
KNOWN_VENDORS = {
    "005056": "VMware",
    "000C29": "VMware",
    "001C42": "Parallels",
    "080027": "VirtualBox",
    "525400": "QEMU/KVM",
    "00155D": "Microsoft Hyper-V",
    "B827EB": "Raspberry Pi",
    "DCA632": "Raspberry Pi",
    "E45F01": "Raspberry Pi",
    "001788": "Philips Hue",
    "F0F0A4": "Amazon",
    "6854FD": "Amazon",
    "00D9D1": "Sony PlayStation",
    "7CBB8A": "Nintendo",
    "001F32": "Nintendo",
    "7811DC": "Xiaomi",
    "64CE85": "Xiaomi",
    "A4C138": "Samsung",
    "001A8A": "Samsung",
    "F4F5D8": "Google",
    "3C5AB4": "Google",
    "A47733": "Google",
    "3C22FB": "Apple",
    "F0B479": "Apple",
    "A85C2C": "Apple",
    "001EC2": "Apple",
    "F8FFC2": "Apple",
    "88E9FE": "Apple",
    "B0BE76": "TP-Link",
    "C025E9": "TP-Link",
    "50C7BF": "TP-Link",
    "14CC20": "TP-Link",
    "E8DE27": "TP-Link",
    "001E58": "D-Link",
    "C8D719": "Cisco-Linksys",
    "20AA4B": "Cisco-Linksys",
    "000F66": "Cisco",
    "001BD4": "Cisco",
    "00260B": "Cisco",
    "B4B024": "Ubiquiti",
    "245A4C": "Ubiquiti",
    "687251": "Ubiquiti",
    "001B21": "Intel",
    "3C970E": "Intel",
    "1831BF": "ASUSTeK",
    "E03F49": "ASUSTeK",
    "00241D": "Giga-Byte Technology",
    "F02F74": "HP",
    "001E0B": "HP",
    "F0DEF1": "Epson",
    "0026AB": "Epson",
    "001BA9": "Brother",
    "008077": "Brother",
    "30055C": "Brother",
    "001132": "Synology",
    "00089B": "QNAP",
    "BCAD28": "Hikvision",
    "4419B6": "Hikvision",
    "3CEF8C": "Dahua",
    "CC2DE0": "Routerboard (MikroTik)",
    "000C42": "MikroTik",
    "6C3B6B": "MikroTik",
}

BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"


def normalize_mac(mac: str) -> Optional[str]:
    """
    Normalize a MAC address to lowercase, colon-separated, two digits per
    octet. Accepts '-' separators and single-digit octets ("0:26:73:...").
    Returns None for anything that is not six octets.
    """
    if not mac:
        return None
    octets = re.split(r"[:-]", mac.strip())
    if len(octets) != 6 or not all(re.fullmatch(r"[0-9A-Fa-f]{1,2}", o) for o in octets):
        return None
    return ":".join(o.lower().zfill(2) for o in octets)


def oui_prefix(mac: str) -> Optional[str]:
    normalized = normalize_mac(mac)
    if normalized is None:
        return None
    return normalized.replace(":", "")[:6].upper()


def load_oui_db(path: str) -> Dict[str, str]:
    db = {}
    if not path or not os.path.exists(path):
        logger.info(f"OUI registry {path} not found, using built-in vendor table")
        return db
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            for line in f:
                if "(hex)" in line:
                    parts = line.split("(hex)")
                elif "(base 16)" in line:
                    parts = line.split("(base 16)")
                else:
                    continue

                if len(parts) < 2:
                    continue

                prefix = parts[0].strip().replace("-", "").replace(":", "").upper()
                vendor = parts[1].strip()
                if len(prefix) >= 6 and vendor:
                    db[prefix[:6]] = vendor
    except OSError as e:
        logger.error(f"Failed to load OUI DB: {e}")
    logger.info(f"Loaded {len(db)} OUI entries")
    return db


class VendorLookup:
    """MAC prefix to manufacturer name, registry file first, built-in table second."""

    def __init__(self, path: Optional[str] = None, entries: Optional[Dict[str, str]] = None):
        self._db = dict(KNOWN_VENDORS)
        self._db.update(entries if entries is not None else load_oui_db(path))

    def __len__(self):
        return len(self._db)

    def lookup(self, mac: str) -> Optional[str]:
        prefix = oui_prefix(mac)
        if prefix is None:
            return None
        return self._db.get(prefix)
