#
# Copyright 2023 aiofp2 team
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
from __future__ import annotations

import argparse
from argparse import ArgumentParser, Namespace
import asyncio
import contextlib
import logging
import os
import pathlib
import sys

import aiofp2.hkjson as hkjson

from .client import AccessoryClient
from .discovery import Discovery
from .exceptions import AccessoryNotFoundError, HomeKitException, InvalidSetupCodeError
from .gateway import GatewayClient, GatewaySync
from .model import DeviceRecord
from .storage import PairingStoreFile
from .transport.ip import HapIpTransport
from .utils import check_setup_code

logger = logging.getLogger(__name__)

XDG_DATA_HOME = pathlib.Path.home() / ".local" / "share"
DEFAULT_PAIRING_FILE = XDG_DATA_HOME / "aiofp2" / "pairing.json"


def setup_logging(level: str | None) -> None:
    """
    Set up the logging to use a decent format and the log level given as parameter.
    :param level: the log level used for the root logger
    """
    logging.basicConfig(
        format="%(asctime)s %(filename)s:%(lineno)04d %(levelname)s %(message)s"
    )
    if level:
        numeric_level = getattr(logging, level.upper(), None)
        if not isinstance(numeric_level, int):
            raise ValueError("Invalid log level: %s" % level)
        logging.getLogger().setLevel(numeric_level)


def timeout_seconds(value: str) -> int:
    try:
        seconds = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value}: not an integer") from None
    if not 1 <= seconds <= 60:
        raise argparse.ArgumentTypeError(f"{value}: must be between 1 and 60")
    return seconds


def pin_from_keyboard() -> str:
    while True:
        try:
            return check_setup_code(input("Enter device setup code (XXX-XX-XXX): "))
        except InvalidSetupCodeError as e:
            print(e)


def make_client(record: DeviceRecord, store: PairingStoreFile) -> AccessoryClient:
    return AccessoryClient(record, store=store, transport_factory=HapIpTransport)


async def find_device(args: Namespace, device_id: str) -> DeviceRecord:
    return await Discovery().find(device_id, args.timeout)


@contextlib.asynccontextmanager
async def connected_client(args: Namespace):
    store = PairingStoreFile(args.file)
    record = await find_device(args, args.device)
    client = make_client(record, store)
    try:
        yield client
    finally:
        await client.disconnect()


async def discover(args: Namespace) -> bool:
    def alive(record: DeviceRecord) -> None:
        logger.debug("found %s at %s:%d", record.name, record.address, record.port)

    records = await Discovery(on_alive=alive).search(args.timeout)
    devices = {device_id: record.serialize() for device_id, record in records.items()}
    print(hkjson.dumps_indented(devices))
    return True


async def pair(args: Namespace) -> bool:
    store = PairingStoreFile(args.file)
    if store.get_pairing(args.device):
        print(f"{args.device} is already paired")
        return False

    record = await find_device(args, args.device)
    setup_code = check_setup_code(args.pin) if args.pin else pin_from_keyboard()

    await make_client(record, store).pair(setup_code)
    print(f"Pairing for {args.device} ({record.name}) was established.")
    return True


async def unpair(args: Namespace) -> bool:
    async with connected_client(args) as client:
        await client.connect()
        await client.unpair()
    print(f"Pairing for {args.device} was removed.")
    return True


async def identify(args: Namespace) -> bool:
    async with connected_client(args) as client:
        await client.identify()
    return True


async def get_id(args: Namespace) -> bool:
    async with connected_client(args) as client:
        print(await client.get_id())
    return True


async def get_accessories(args: Namespace) -> bool:
    async with connected_client(args) as client:
        data = await client.accessories()

    if args.output == "json":
        print(hkjson.dumps_indented(data))
        return True

    for accessory in data:
        aid = accessory["aid"]
        for service in accessory["services"]:
            print(f"{aid}.{service['iid']}: >{service['type']}<")
            for characteristic in service["characteristics"]:
                c_iid = characteristic["iid"]
                value = characteristic.get("value", "")
                perms = ",".join(characteristic.get("perms", []))
                print(f"  {aid}.{c_iid}: {value} >{characteristic['type']}< [{perms}]")
    return True


async def get_api_key(args: Namespace) -> bool:
    store = PairingStoreFile(args.file)
    async with GatewayClient(args.host, timeout=args.timeout) as gateway:
        bridge_id = (await gateway.get_config())["bridgeid"]
        api_key = await gateway.get_api_key()

    store.save_api_key(bridge_id, api_key)
    print(hkjson.dumps(api_key))
    return True


async def proxy(args: Namespace) -> bool:
    store = PairingStoreFile(args.file)

    async with GatewayClient(args.host, timeout=args.timeout) as gateway:
        bridge_id = (await gateway.get_config())["bridgeid"]
        gateway.api_key = (
            args.api_key or store.get_api_key(bridge_id) or os.environ.get("DECONZ_API_KEY")
        )
        if gateway.api_key is None:
            host = "" if args.host == default_host() else f" -H {args.host}"
            print(f'missing API key - unlock gateway and run "aiofp2{host} get-api-key"')
            return False

        proxies: list[tuple[AccessoryClient, GatewaySync]] = []
        try:
            for device_id in store.pairings():
                try:
                    record = await find_device(args, device_id)
                except AccessoryNotFoundError as e:
                    logger.warning("%s", e)
                    continue

                client = make_client(record, store)
                sync = None
                try:
                    sync = GatewaySync(gateway, await client.get_id())
                    await sync.async_setup()
                    client.add_listener(sync)
                    client.add_error_listener(
                        lambda error, device_id=device_id: logger.warning(
                            "%s: %s", device_id, error
                        )
                    )
                    await client.subscribe()
                except HomeKitException as e:
                    logger.warning("%s: not proxied: %s", device_id, e)
                    await client.disconnect()
                    if sync is not None:
                        await sync.async_stop()
                    continue

                proxies.append((client, sync))

            if not proxies:
                print("no paired devices found")
                return False

            await asyncio.Event().wait()
        finally:
            for client, sync in proxies:
                await client.disconnect()
                await sync.async_stop()

    return True


def default_host() -> str:
    return os.environ.get("DECONZ_HOST", "localhost")


def setup_parser_for_device(parser: ArgumentParser) -> None:
    parser.add_argument(
        "-d",
        action="store",
        required=True,
        dest="device",
        help="HomeKit Device ID (use discover to get it)",
    )


def build_parser() -> ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aiofp2",
        description="Proxy for the Aqara Presence Sensor FP2",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log", action="store", dest="loglevel")
    parser.add_argument(
        "-f",
        action="store",
        required=False,
        dest="file",
        default=DEFAULT_PAIRING_FILE,
        help="File with the pairing data and gateway API keys",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        action="store",
        dest="timeout",
        type=timeout_seconds,
        default=5,
        help="Seconds to wait for devices and the gateway (1-60, default 5)",
    )
    parser.add_argument(
        "-H",
        "--host",
        action="store",
        dest="host",
        default=default_host(),
        help="deCONZ gateway as hostname[:port] (default $DECONZ_HOST or localhost)",
    )
    parser.add_argument(
        "-K",
        "--api-key",
        action="store",
        dest="api_key",
        default=None,
        help="deCONZ API key, instead of the one stored for the gateway",
    )
    parser.set_defaults(func=proxy)

    subparsers = parser.add_subparsers(
        title="available commands", metavar="command [options ...]"
    )

    subparsers.add_parser("discover", help="Find FP2 devices on the network").set_defaults(
        func=discover
    )

    pair_parser = subparsers.add_parser("pair", help="Pair with an unpaired FP2")
    pair_parser.set_defaults(func=pair)
    setup_parser_for_device(pair_parser)
    pair_parser.add_argument(
        "-p",
        action="store",
        required=False,
        dest="pin",
        help="HomeKit setup code",
    )

    for name, func, description in (
        ("unpair", unpair, "Remove our pairing from an FP2"),
        ("identify", identify, "Make an FP2 identify itself"),
        ("get-id", get_id, "Print the serial number of a paired FP2"),
    ):
        command_parser = subparsers.add_parser(name, help=description)
        command_parser.set_defaults(func=func)
        setup_parser_for_device(command_parser)

    accessories_parser = subparsers.add_parser(
        "accessories",
        help="List all services and characteristics of a paired FP2",
    )
    accessories_parser.set_defaults(func=get_accessories)
    setup_parser_for_device(accessories_parser)
    accessories_parser.add_argument(
        "-o",
        action="store",
        dest="output",
        default="compact",
        choices=["json", "compact"],
        help="Specify output format",
    )

    subparsers.add_parser(
        "get-api-key", help="Obtain an API key from an unlocked deCONZ gateway"
    ).set_defaults(func=get_api_key)

    subparsers.add_parser(
        "proxy", help="Forward events of all paired FP2s to the gateway (default)"
    ).set_defaults(func=proxy)

    return parser


async def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)

    setup_logging(args.loglevel)

    try:
        ok = await args.func(args)
    except HomeKitException as e:
        print(f"{type(e).__name__}: {e}")
        ok = False

    if not ok:
        sys.exit(1)


def sync_main():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    sync_main()
