from __future__ import annotations

from .models import DEVICE_ORDER, DeviceCategory, PresenceSnapshot


def classify_devices(snapshot: PresenceSnapshot | None) -> frozenset[DeviceCategory] | None:
    """Return the client categories that are not offline.

    ``None`` means the presence could not be determined at all, which is
    different from an empty set (every client offline or invisible).
    """
    if snapshot is None:
        return None

    flags = {
        DeviceCategory.DESKTOP: snapshot.desktop,
        DeviceCategory.WEB: snapshot.web,
        DeviceCategory.MOBILE: snapshot.mobile,
    }
    return frozenset(category for category, online in flags.items() if online)


def format_devices(devices: frozenset[DeviceCategory]) -> str:
    return ", ".join(category.value for category in DEVICE_ORDER if category in devices)


def parse_devices(value: str | None) -> frozenset[DeviceCategory]:
    if not value:
        return frozenset()
    return frozenset(DeviceCategory(part.strip()) for part in value.split(",") if part.strip())
