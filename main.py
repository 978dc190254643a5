# Author: Omi Shrestha

import asyncio

from ble_utils import BleakCentral
from config import Settings, setup_logging
from coordinator import TrackingSession
from location_source import AuthorizationStatus


def print_status(tracker: TrackingSession):
    status = tracker.status()
    ble = status["ble"]
    upload = status["upload"]

    print(f"\n[STATUS] Session {status['session_id']} - {'Tracking Active' if status['tracking'] else 'Session Stopped'}")
    location = status["location"]
    if location:
        print(f"  Latitude:  {location['latitude']:.6f}")
        print(f"  Longitude: {location['longitude']:.6f}")
        print(f"  Accuracy:  ±{location['accuracy']:.0f} m")
        print(f"  Speed:     {location['speed_kmh']:.1f} km/h")
    else:
        print("  No GPS fix yet")
    print(f"  Uploads:   {upload['upload_count']} ({'Connected' if upload['is_connected'] else 'Disconnected'})")
    if upload["last_upload_time"]:
        print(f"  Last Upload: {upload['last_upload_time']}")
    print(f"  BLE:       {ble['status']}")
    if ble["received_text"]:
        print(f"  Device:    {ble['received_text']}")
    print()


async def main():
    """Main application entry point."""
    settings = Settings.from_environment()
    setup_logging(settings)

    central = BleakCentral()
    tracker = TrackingSession(settings, central)
    tracker.subscribe(lambda line: print(line))

    if await tracker.location_source.request_permission() != AuthorizationStatus.AUTHORIZED:
        print("gpsd is not reachable; tracking will start without GPS fixes.")

    tracker.start_tracking()

    print("\n" + "=" * 50)
    print("TRACKING ACTIVE")
    print(f"Looking for '{settings.device_name}', uploading to {settings.upload_url}")
    print("=" * 50)
    print("\nCommands:")
    print("  - Type any text to send to the device")
    print("  - 'status' to view GPS, upload and BLE status")
    print("  - 'history' to view the event log")
    print("  - 'sleep' to put the device to sleep")
    print("  - 'scan' to restart the BLE scan")
    print("  - 'quit' to exit")
    print()

    while True:
        try:
            command = await asyncio.to_thread(input, "Enter command: ")
        except (EOFError, KeyboardInterrupt):
            print("\nExiting...")
            break

        command = command.strip()
        if not command:
            continue
        if command.lower() == 'quit':
            break

        elif command.lower() == 'status':
            print_status(tracker)

        elif command.lower() == 'history':
            print("\n[EVENT LOG]")
            entries = tracker.event_log.recent(20)
            if entries:
                for entry in entries:
                    print(f"  {entry}")
            else:
                print("  No logs yet")
            print()

        elif command.lower() == 'sleep':
            if not tracker.send_sleep():
                print("Not connected or no control characteristic")

        elif command.lower() == 'scan':
            if not tracker.peripheral.state.is_connected:
                tracker.peripheral.start_scan()
            else:
                print("Already connected")

        elif not tracker.send_message(command):
            print("Not connected or no write characteristic")

    tracker.stop_tracking()
    await tracker.scheduler.close()
    await central.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
