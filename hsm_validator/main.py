"""CLI entrypoint for the HSM validator."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import HsmValidatorSettings
from .errors import HsmValidatorError
from .hsm_client import ThalesHsm
from .validator import HsmPrivValidator, read_record, tendermint_address


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stdout,
    )


def build_genesis(*, chain_id: str, public_key: bytes, power: int) -> Dict[str, Any]:
    return {
        "genesis_time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "chain_id": chain_id,
        "validators": [
            {
                "pub_key": {"type": "ed25519", "data": public_key.hex().upper()},
                "power": power,
                "name": "",
            }
        ],
        "app_hash": "",
    }


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    tmp_path.replace(path)


def cmd_init(settings: HsmValidatorSettings, logger: logging.Logger) -> int:
    validator = HsmPrivValidator.generate(ThalesHsm.from_settings(settings))

    priv_path = settings.priv_validator_path
    validator.save_to_file(priv_path)
    logger.info("Wrote private validator file to %s", priv_path)

    genesis_path = settings.genesis_path
    genesis = build_genesis(
        chain_id=settings.chain_id,
        public_key=validator.public_key,
        power=settings.validator_power,
    )
    try:
        _write_json(genesis_path, genesis)
    except OSError as exc:
        logger.error("Unable to write genesis file %s: %s", genesis_path, exc)
        return 1
    logger.info("Wrote genesis file to %s", genesis_path)
    return 0


def cmd_show_validator(settings: HsmValidatorSettings, logger: logging.Logger) -> int:
    record = read_record(settings.priv_validator_path)
    print(
        json.dumps(
            {
                "address": tendermint_address(record.public_key).hex().upper(),
                "pub_key": {"type": "ed25519", "data": record.public_key.hex().upper()},
            },
            indent=2,
        )
    )
    return 0


def cmd_check(settings: HsmValidatorSettings, logger: logging.Logger) -> int:
    validator = HsmPrivValidator.load_from_file(
        settings.priv_validator_path,
        ThalesHsm.from_settings(settings),
    )
    logger.info(
        "Validator ready address=%s hsm=%s:%s",
        validator.address.hex().upper(),
        settings.hsm_host,
        settings.hsm_port,
    )
    return 0


COMMANDS = {
    "init": cmd_init,
    "show-validator": cmd_show_validator,
    "check": cmd_check,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="hsm-validator")
    ap.add_argument("--home", type=Path, default=None, help="directory holding validator and genesis files")
    ap.add_argument("--hsm-host", default=None)
    ap.add_argument("--hsm-port", type=int, default=None)
    ap.add_argument("--chain-id", default=None)
    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="generate a key pair in the HSM and write validator + genesis files")
    sub.add_parser("show-validator", help="print the validator public key and address")
    sub.add_parser("check", help="load the validator key into the HSM and exit")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides: Dict[str, Any] = {}
    if args.home is not None:
        overrides["home"] = args.home
    if args.hsm_host is not None:
        overrides["hsm_host"] = args.hsm_host
    if args.hsm_port is not None:
        overrides["hsm_port"] = args.hsm_port
    if args.chain_id is not None:
        overrides["chain_id"] = args.chain_id
    settings = HsmValidatorSettings(**overrides)

    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        return COMMANDS[args.command](settings, logger)
    except HsmValidatorError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
