"""
SQLAlchemy-backed repositories, one per entity.

Each call opens its own short session from the injected session factory and
returns plain domain dataclasses, so callers never hold ORM instances across
threads. Database errors are not caught here; they propagate to the caller.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update

from . import models
from .domain import (
    Alert,
    AlertType,
    Device,
    DeviceStatus,
    DeviceType,
    HealthCategory,
    HealthFactorResult,
    HealthScore,
    HealthTrend,
    Metric,
    Problem,
    ProblemCategory,
    ProblemSeverity,
    ScanRecord,
    ScanStatus,
    SpeedTestResult,
    now_utc,
)
from .errors import DeviceNotFoundError


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _to_device(row: models.Device) -> Device:
    return Device(
        id=row.id,
        ip_address=row.ip_address,
        mac_address=row.mac_address,
        hostname=row.hostname,
        custom_name=row.custom_name,
        vendor=row.vendor,
        device_type=DeviceType(row.device_type),
        status=DeviceStatus(row.status),
        is_gateway=bool(row.is_gateway),
        is_monitored=bool(row.is_monitored),
        first_seen=_utc(row.first_seen),
        last_seen=_utc(row.last_seen),
        latency_ms=row.latest_latency_ms,
        packet_loss=row.latest_packet_loss,
        open_ports=list(row.open_ports or []),
        notes=row.notes,
    )


def _to_metric(row: models.Metric) -> Metric:
    return Metric(
        id=row.id,
        device_id=row.device_id,
        timestamp=_utc(row.timestamp),
        latency_ms=row.latency_ms,
        packet_loss=row.packet_loss,
        jitter=row.jitter,
        is_reachable=bool(row.is_reachable),
    )


def _to_speed_test(row: models.SpeedTest) -> SpeedTestResult:
    return SpeedTestResult(
        id=row.id,
        timestamp=_utc(row.timestamp),
        download_mbps=row.download_mbps,
        upload_mbps=row.upload_mbps,
        ping_ms=row.ping_ms,
        jitter=row.jitter,
        isp=row.isp,
        server_info=row.server_info,
        contracted_download_mbps=row.contracted_download_mbps,
        contracted_upload_mbps=row.contracted_upload_mbps,
        download_percent=row.download_percent,
        upload_percent=row.upload_percent,
        triggered_by=row.triggered_by,
    )


def _to_problem(row: models.Problem) -> Problem:
    return Problem(
        id=row.id,
        rule_id=row.rule_id,
        severity=ProblemSeverity(row.severity),
        category=ProblemCategory(row.category),
        title=row.title,
        description=row.description,
        impact=row.impact,
        recommendation=row.recommendation,
        affected_devices=list(row.affected_devices or []),
        is_active=bool(row.is_active),
        detected_at=_utc(row.detected_at),
        resolved_at=_utc(row.resolved_at),
    )


def _to_alert(row: models.Alert) -> Alert:
    return Alert(
        id=row.id,
        type=AlertType(row.type),
        severity=ProblemSeverity(row.severity),
        title=row.title,
        message=row.message,
        device_id=row.device_id,
        problem_id=row.problem_id,
        created_at=_utc(row.created_at),
        read_at=_utc(row.read_at),
    )


def _to_health_score(row: models.HealthScore) -> HealthScore:
    return HealthScore(
        id=row.id,
        score=row.score,
        category=HealthCategory(row.category),
        factors=[HealthFactorResult(**f) for f in (row.factors or [])],
        trend=HealthTrend(row.trend),
        calculated_at=_utc(row.calculated_at),
    )


def _to_scan(row: models.Scan) -> ScanRecord:
    return ScanRecord(
        id=row.id,
        scan_type=row.scan_type,
        triggered_by=row.triggered_by,
        status=ScanStatus(row.status),
        started_at=_utc(row.started_at),
        completed_at=_utc(row.completed_at),
        devices_found=row.devices_found or 0,
        new_devices=row.new_devices or 0,
        error_message=row.error_message,
    )


class DeviceRepository:
    # Domain field name -> column name, for the fields update() accepts.
    UPDATABLE = {
        "ip_address": "ip_address",
        "hostname": "hostname",
        "custom_name": "custom_name",
        "vendor": "vendor",
        "device_type": "device_type",
        "status": "status",
        "is_gateway": "is_gateway",
        "is_monitored": "is_monitored",
        "last_seen": "last_seen",
        "latency_ms": "latest_latency_ms",
        "packet_loss": "latest_packet_loss",
        "open_ports": "open_ports",
        "notes": "notes",
    }

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def find_all(self) -> List[Device]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Device).order_by(models.Device.last_seen.desc())
            ).scalars().all()
            return [_to_device(r) for r in rows]

    def find_monitored(self) -> List[Device]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Device)
                .where(models.Device.is_monitored.is_(True))
                .order_by(models.Device.last_seen.desc())
            ).scalars().all()
            return [_to_device(r) for r in rows]

    def find_by_id(self, device_id: str) -> Optional[Device]:
        with self._session_factory() as session:
            row = session.get(models.Device, device_id)
            return _to_device(row) if row else None

    def find_by_mac(self, mac_address: str) -> Optional[Device]:
        with self._session_factory() as session:
            row = session.execute(
                select(models.Device).where(models.Device.mac_address == mac_address)
            ).scalars().first()
            return _to_device(row) if row else None

    def find_gateway(self) -> Optional[Device]:
        with self._session_factory() as session:
            row = session.execute(
                select(models.Device).where(models.Device.is_gateway.is_(True)).limit(1)
            ).scalars().first()
            return _to_device(row) if row else None

    def create(
        self,
        ip_address: str,
        mac_address: str,
        hostname: Optional[str] = None,
        vendor: Optional[str] = None,
        device_type: DeviceType = DeviceType.UNKNOWN,
        is_gateway: bool = False,
        seen_at: Optional[datetime] = None,
    ) -> Device:
        seen_at = seen_at or now_utc()
        row = models.Device(
            id=_new_id(),
            ip_address=ip_address,
            mac_address=mac_address,
            hostname=hostname,
            vendor=vendor,
            device_type=DeviceType(device_type).value,
            status=DeviceStatus.ONLINE.value,
            is_gateway=is_gateway,
            is_monitored=True,
            first_seen=seen_at,
            last_seen=seen_at,
            open_ports=[],
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_device(row)

    def update(self, device_id: str, **fields) -> Device:
        unknown = set(fields) - set(self.UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update device fields: {sorted(unknown)}")

        with self._session_factory.begin() as session:
            row = session.get(models.Device, device_id)
            if row is None:
                raise DeviceNotFoundError(device_id)
            for name, value in fields.items():
                if isinstance(value, (DeviceType, DeviceStatus)):
                    value = value.value
                setattr(row, self.UPDATABLE[name], value)
            session.flush()
            return _to_device(row)

    def summary(self) -> Dict[str, object]:
        """Device counts in total, per status and per type."""
        with self._session_factory() as session:
            by_status = dict(session.execute(
                select(models.Device.status, func.count(models.Device.id)).group_by(models.Device.status)
            ).all())
            by_type = dict(session.execute(
                select(models.Device.device_type, func.count(models.Device.id)).group_by(models.Device.device_type)
            ).all())
        return {
            "total": sum(by_status.values()),
            "online": by_status.get(DeviceStatus.ONLINE.value, 0),
            "offline": by_status.get(DeviceStatus.OFFLINE.value, 0),
            "degraded": by_status.get(DeviceStatus.DEGRADED.value, 0),
            "by_type": by_type,
        }

    def delete(self, device_id: str) -> bool:
        with self._session_factory.begin() as session:
            row = session.get(models.Device, device_id)
            if row is None:
                return False
            session.execute(delete(models.Metric).where(models.Metric.device_id == device_id))
            session.delete(row)
            return True


class MetricRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create(
        self,
        device_id: str,
        latency_ms: Optional[float],
        packet_loss: float,
        jitter: Optional[float],
        is_reachable: bool,
        timestamp: Optional[datetime] = None,
    ) -> Metric:
        row = models.Metric(
            device_id=device_id,
            timestamp=timestamp or now_utc(),
            latency_ms=latency_ms,
            packet_loss=packet_loss,
            jitter=jitter,
            is_reachable=is_reachable,
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_metric(row)

    def find_by_device(self, device_id: str, since: datetime) -> List[Metric]:
        """Samples for one device newer than `since`, oldest first."""
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Metric)
                .where(models.Metric.device_id == device_id)
                .where(models.Metric.timestamp >= since)
                .order_by(models.Metric.timestamp.asc(), models.Metric.id.asc())
            ).scalars().all()
            return [_to_metric(r) for r in rows]

    def find_since(self, since: datetime, device_ids: Iterable[str]) -> Dict[str, List[Metric]]:
        """Samples newer than `since` grouped per device, oldest first.

        Every requested device id is present in the result, with an empty
        list when it has no samples in the window.
        """
        grouped = {device_id: [] for device_id in device_ids}
        if not grouped:
            return grouped
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Metric)
                .where(models.Metric.device_id.in_(list(grouped)))
                .where(models.Metric.timestamp >= since)
                .order_by(models.Metric.timestamp.asc(), models.Metric.id.asc())
            ).scalars().all()
            for row in rows:
                grouped[row.device_id].append(_to_metric(row))
        return grouped

    def purge_older_than(self, cutoff: datetime) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(delete(models.Metric).where(models.Metric.timestamp < cutoff))
            return result.rowcount or 0


class SpeedTestRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create(
        self,
        download_mbps: float,
        upload_mbps: float,
        ping_ms: float,
        jitter: Optional[float] = None,
        isp: Optional[str] = None,
        server_info: Optional[str] = None,
        contracted_download_mbps: Optional[float] = None,
        contracted_upload_mbps: Optional[float] = None,
        triggered_by: str = "manual",
        timestamp: Optional[datetime] = None,
    ) -> SpeedTestResult:
        def percent(measured, contracted):
            if not contracted or contracted <= 0:
                return None
            return round(measured / contracted * 100, 2)

        row = models.SpeedTest(
            timestamp=timestamp or now_utc(),
            download_mbps=download_mbps,
            upload_mbps=upload_mbps,
            ping_ms=ping_ms,
            jitter=jitter,
            isp=isp,
            server_info=server_info,
            contracted_download_mbps=contracted_download_mbps or None,
            contracted_upload_mbps=contracted_upload_mbps or None,
            download_percent=percent(download_mbps, contracted_download_mbps),
            upload_percent=percent(upload_mbps, contracted_upload_mbps),
            triggered_by=triggered_by,
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_speed_test(row)

    def latest(self) -> Optional[SpeedTestResult]:
        results = self.recent(1)
        return results[0] if results else None

    def recent(self, limit: int = 10) -> List[SpeedTestResult]:
        """Most recent results, newest first."""
        with self._session_factory() as session:
            rows = session.execute(
                select(models.SpeedTest)
                .order_by(models.SpeedTest.timestamp.desc(), models.SpeedTest.id.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_speed_test(r) for r in rows]


class ProblemRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def find_all(self, active_only: bool = False) -> List[Problem]:
        query = select(models.Problem)
        if active_only:
            query = query.where(models.Problem.is_active.is_(True))
        query = query.order_by(models.Problem.detected_at.desc())
        with self._session_factory() as session:
            return [_to_problem(r) for r in session.execute(query).scalars().all()]

    def find_active(self) -> List[Problem]:
        return self.find_all(active_only=True)

    def find_by_id(self, problem_id: str) -> Optional[Problem]:
        with self._session_factory() as session:
            row = session.get(models.Problem, problem_id)
            return _to_problem(row) if row else None

    def find_by_rule_id(self, rule_id: str) -> List[Problem]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Problem)
                .where(models.Problem.rule_id == rule_id)
                .order_by(models.Problem.detected_at.asc())
            ).scalars().all()
            return [_to_problem(r) for r in rows]

    def find_active_by_rule_id(self, rule_id: str) -> Optional[Problem]:
        with self._session_factory() as session:
            row = session.execute(
                select(models.Problem)
                .where(models.Problem.rule_id == rule_id)
                .where(models.Problem.is_active.is_(True))
                .limit(1)
            ).scalars().first()
            return _to_problem(row) if row else None

    def create(
        self,
        rule_id: str,
        severity: ProblemSeverity,
        category: ProblemCategory,
        title: str,
        description: str,
        impact: str = "",
        recommendation: str = "",
        affected_devices: Optional[List[str]] = None,
        detected_at: Optional[datetime] = None,
    ) -> Problem:
        row = models.Problem(
            id=_new_id(),
            rule_id=rule_id,
            severity=ProblemSeverity(severity).value,
            category=ProblemCategory(category).value,
            title=title,
            description=description,
            impact=impact,
            recommendation=recommendation,
            affected_devices=list(affected_devices or []),
            is_active=True,
            detected_at=detected_at or now_utc(),
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_problem(row)

    def update_active(
        self,
        problem_id: str,
        title: str,
        description: str,
        impact: str,
        recommendation: str,
        severity: ProblemSeverity,
        affected_devices: List[str],
    ) -> Optional[Problem]:
        with self._session_factory.begin() as session:
            row = session.get(models.Problem, problem_id)
            if row is None or not row.is_active:
                return None
            row.title = title
            row.description = description
            row.impact = impact
            row.recommendation = recommendation
            row.severity = ProblemSeverity(severity).value
            row.affected_devices = list(affected_devices)
            session.flush()
            return _to_problem(row)

    def resolve(self, problem_id: str, resolved_at: Optional[datetime] = None) -> Optional[Problem]:
        with self._session_factory.begin() as session:
            row = session.get(models.Problem, problem_id)
            if row is None:
                return None
            if row.is_active:
                row.is_active = False
                row.resolved_at = resolved_at or now_utc()
                session.flush()
            return _to_problem(row)

    def last_resolved_at(self, rule_id: str) -> Optional[datetime]:
        with self._session_factory() as session:
            value = session.execute(
                select(func.max(models.Problem.resolved_at))
                .where(models.Problem.rule_id == rule_id)
                .where(models.Problem.is_active.is_(False))
            ).scalar()
            return _utc(value)

    def count_active_by_severity(self) -> Dict[str, int]:
        counts = {severity.value: 0 for severity in ProblemSeverity}
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Problem.severity, func.count(models.Problem.id))
                .where(models.Problem.is_active.is_(True))
                .group_by(models.Problem.severity)
            ).all()
            for severity, count in rows:
                if severity in counts:
                    counts[severity] = count
        return counts


class AlertRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create(
        self,
        type: AlertType,
        severity: ProblemSeverity,
        title: str,
        message: str,
        device_id: Optional[str] = None,
        problem_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Alert:
        row = models.Alert(
            id=_new_id(),
            type=AlertType(type).value,
            severity=ProblemSeverity(severity).value,
            title=title,
            message=message,
            device_id=device_id,
            problem_id=problem_id,
            created_at=created_at or now_utc(),
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_alert(row)

    def find_all(self, unread_only: bool = False, limit: int = 50) -> List[Alert]:
        query = select(models.Alert)
        if unread_only:
            query = query.where(models.Alert.read_at.is_(None))
        query = query.order_by(models.Alert.created_at.desc()).limit(limit)
        with self._session_factory() as session:
            return [_to_alert(r) for r in session.execute(query).scalars().all()]

    def find_by_problem(self, problem_id: str) -> List[Alert]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Alert)
                .where(models.Alert.problem_id == problem_id)
                .order_by(models.Alert.created_at.asc())
            ).scalars().all()
            return [_to_alert(r) for r in rows]

    def find_by_device(self, device_id: str, limit: int = 50) -> List[Alert]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Alert)
                .where(models.Alert.device_id == device_id)
                .order_by(models.Alert.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_alert(r) for r in rows]

    def unread_count(self) -> int:
        with self._session_factory() as session:
            return session.execute(
                select(func.count(models.Alert.id)).where(models.Alert.read_at.is_(None))
            ).scalar() or 0

    def mark_read(self, alert_id: str, read_at: Optional[datetime] = None) -> Optional[Alert]:
        with self._session_factory.begin() as session:
            row = session.get(models.Alert, alert_id)
            if row is None:
                return None
            if row.read_at is None:
                row.read_at = read_at or now_utc()
                session.flush()
            return _to_alert(row)

    def mark_all_read(self, read_at: Optional[datetime] = None) -> int:
        with self._session_factory.begin() as session:
            result = session.execute(
                update(models.Alert)
                .where(models.Alert.read_at.is_(None))
                .values(read_at=read_at or now_utc())
            )
            return result.rowcount or 0

    def delete(self, alert_id: str) -> bool:
        with self._session_factory.begin() as session:
            row = session.get(models.Alert, alert_id)
            if row is None:
                return False
            session.delete(row)
            return True


class HealthScoreRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create(
        self,
        score: int,
        category: HealthCategory,
        factors: List[HealthFactorResult],
        trend: HealthTrend,
        calculated_at: Optional[datetime] = None,
    ) -> HealthScore:
        row = models.HealthScore(
            score=score,
            category=HealthCategory(category).value,
            factors=[
                {"name": f.name, "score": f.score, "weight": f.weight, "description": f.description}
                for f in factors
            ],
            trend=HealthTrend(trend).value,
            calculated_at=calculated_at or now_utc(),
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_health_score(row)

    def latest(self) -> Optional[HealthScore]:
        history = self.history(1)
        return history[0] if history else None

    def history(self, limit: int = 50) -> List[HealthScore]:
        """Stored scores, newest first."""
        with self._session_factory() as session:
            rows = session.execute(
                select(models.HealthScore)
                .order_by(models.HealthScore.calculated_at.desc(), models.HealthScore.id.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_health_score(r) for r in rows]


class ScanRepository:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def start(self, scan_type: str, triggered_by: str, started_at: Optional[datetime] = None) -> ScanRecord:
        row = models.Scan(
            id=_new_id(),
            scan_type=scan_type,
            triggered_by=triggered_by,
            status=ScanStatus.RUNNING.value,
            started_at=started_at or now_utc(),
            devices_found=0,
            new_devices=0,
        )
        with self._session_factory.begin() as session:
            session.add(row)
            session.flush()
            return _to_scan(row)

    def complete(self, scan_id: str, devices_found: int, new_devices: int, completed_at: Optional[datetime] = None):
        return self._finish(
            scan_id,
            status=ScanStatus.COMPLETED,
            devices_found=devices_found,
            new_devices=new_devices,
            completed_at=completed_at,
        )

    def fail(self, scan_id: str, error_message: str, completed_at: Optional[datetime] = None):
        return self._finish(scan_id, status=ScanStatus.FAILED, error_message=error_message, completed_at=completed_at)

    def _finish(self, scan_id, status, completed_at=None, **fields) -> Optional[ScanRecord]:
        with self._session_factory.begin() as session:
            row = session.get(models.Scan, scan_id)
            if row is None:
                return None
            row.status = status.value
            row.completed_at = completed_at or now_utc()
            for name, value in fields.items():
                setattr(row, name, value)
            session.flush()
            return _to_scan(row)

    def find_recent(self, limit: int = 20) -> List[ScanRecord]:
        with self._session_factory() as session:
            rows = session.execute(
                select(models.Scan).order_by(models.Scan.started_at.desc()).limit(limit)
            ).scalars().all()
            return [_to_scan(r) for r in rows]


@dataclass
class Repositories:
    devices: DeviceRepository
    metrics: MetricRepository
    speed_tests: SpeedTestRepository
    problems: ProblemRepository
    alerts: AlertRepository
    health_scores: HealthScoreRepository
    scans: ScanRepository

    @classmethod
    def from_session_factory(cls, session_factory) -> "Repositories":
        return cls(
            devices=DeviceRepository(session_factory),
            metrics=MetricRepository(session_factory),
            speed_tests=SpeedTestRepository(session_factory),
            problems=ProblemRepository(session_factory),
            alerts=AlertRepository(session_factory),
            health_scores=HealthScoreRepository(session_factory),
            scans=ScanRepository(session_factory),
        )
