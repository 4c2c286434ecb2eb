"""
One-shot BLE scan for `idasen-control --scan` and `desk-scan`.

Lists everything in range, strongest signal first, and marks peripherals
advertising the desk's control service.
"""

import asyncio

from bleak import BleakScanner

from idasen_control.protocol import UUID_CONTROL_SERVICE


def advertises_desk(service_uuids) -> bool:
    return UUID_CONTROL_SERVICE in (uuid.lower() for uuid in service_uuids or ())


async def run_scan(timeout: float = 10.0) -> list[tuple[str, str | None, bool]]:
    """
    Scan for `timeout` seconds and print what was found.

    Returns:
        (address, name, is_desk) for every peripheral seen, strongest first
    """
    print(f"🔍 Scanning for BLE devices ({timeout:.0f} seconds)...\n")
    discovered = await BleakScanner.discover(timeout=timeout, return_adv=True)
    ranked = sorted(discovered.values(), key=lambda found: found[1].rssi, reverse=True)

    found = []
    for device, adv in ranked:
        is_desk = advertises_desk(adv.service_uuids)
        found.append((device.address, device.name, is_desk))
        name = (device.name or "(unknown)")[:24]
        print(f"{'🪑' if is_desk else '  '} {name:<25} {device.address:<36} {adv.rssi:>5} dBm")

    desks = [address for address, _, is_desk in found if is_desk]
    if not found:
        print("No devices found.")
    if desks:
        print(f"\n✅ Found {len(desks)} desk(s). Use --connect-to <address> to pin one.")
    else:
        print("\n⚠️  No desks found. Make sure your desk is powered on.")
    return found


def main_scan():
    """Entry point for desk-scan command."""
    asyncio.run(run_scan())


if __name__ == "__main__":
    main_scan()
