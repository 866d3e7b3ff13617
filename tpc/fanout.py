# tpc/fanout.py

"""
Device fanout: which devices an operation writes to.

The device set is a snapshot taken once per operation. Devices joining or
leaving while the operation runs are not tracked; callers re-drive the
operation on topology changes.
"""

from __future__ import annotations

from typing import List

from tpc.host import DeviceService, MastershipService


class DeviceFanout:
    def __init__(self, device_service: DeviceService, mastership_service: MastershipService):
        self.device_service = device_service
        self.mastership_service = mastership_service

    def devices(self, master_only: bool = False) -> List[str]:
        """
        Snapshot of available device ids, optionally limited to devices this
        instance is the local master of.
        """
        ids = [d.id for d in self.device_service.get_available_devices()]
        if master_only:
            ids = self.local_masters(ids)
        return ids

    def local_masters(self, device_ids: List[str]) -> List[str]:
        """Filter an existing snapshot down to locally mastered devices."""
        return [d for d in device_ids if self.mastership_service.is_local_master(d)]
