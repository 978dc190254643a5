import asyncio
from bleak import BleakScanner

from config import Settings


async def scan_all(timeout: float = 10.0):
    settings = Settings.from_environment()
    print(f"Scanning for ALL BLE devices ({timeout:.0f} seconds)...")
    found = await BleakScanner.discover(timeout=timeout, return_adv=True)

    print(f"\nFound {len(found)} devices:\n")
    for device, adv in found.values():
        name = adv.local_name or device.name
        marker = "  <-- target" if name == settings.device_name else ""
        print(f"Name: {name or 'Unknown'}{marker}")
        print(f"Address: {device.address}")
        print(f"RSSI: {adv.rssi}")
        print("-" * 50)


if __name__ == "__main__":
    asyncio.run(scan_all())
