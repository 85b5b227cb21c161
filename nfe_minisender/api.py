import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from app.nfe_client.endpoint_resolver import EndpointResolver
from app.nfe_client.exceptions import NFeException
from app.nfe_client.webservices import ServiceCatalog

from nfe_minisender.core_send import load_contingency, save_contingency, send_from_xml, sign_from_xml

DEFAULT_CONTINGENCY_FILE = Path("contingency.json")


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def resolve(
    *,
    service: str,
    uf: str,
    env: str,
    model: int,
    version: str = "4.00",
    contingency_file=None,
    ignore_contingency: bool = False,
) -> dict:
    holder = load_contingency(contingency_file)
    resolver = EndpointResolver(ServiceCatalog(version))
    descriptor = resolver.resolve(
        service, uf, env, model, holder.current(), ignore_contingency=ignore_contingency
    )
    return asdict(descriptor)


def _cmd_contingency(args) -> int:
    path = args.file
    holder = load_contingency(path)
    if args.action == "activate":
        ctype = None if args.type in (None, "auto") else args.type
        holder.activate(ctype, args.motive or "", uf=args.uf)
        save_contingency(holder, path)
    elif args.action == "clear":
        holder.clear()
        save_contingency(holder, path)
    _print_json(json.loads(holder.to_json()))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="nfe_minisender")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sign = sub.add_parser("sign")
    p_sign.add_argument("xml", type=Path)
    p_sign.add_argument("--config", default=None)
    p_sign.add_argument("--contingency-file", type=Path, default=None)
    p_sign.add_argument("--out", type=Path, default=None)
    p_sign.add_argument("--model", type=int, choices=[55, 65], default=None)

    p_send = sub.add_parser("send")
    p_send.add_argument("xml", type=Path)
    p_send.add_argument("--service", default="NfeAutorizacao")
    p_send.add_argument("--config", default=None)
    p_send.add_argument("--contingency-file", type=Path, default=None)
    p_send.add_argument("--out", type=Path, default=None)
    p_send.add_argument("--model", type=int, choices=[55, 65], default=None)

    p_resolve = sub.add_parser("resolve")
    p_resolve.add_argument("service", nargs="?", default="NfeAutorizacao")
    p_resolve.add_argument("--uf", required=True)
    p_resolve.add_argument("--env", default="homologacao")
    p_resolve.add_argument("--model", type=int, choices=[55, 65], default=55)
    p_resolve.add_argument("--version", default="4.00")
    p_resolve.add_argument("--contingency-file", type=Path, default=None)
    p_resolve.add_argument("--ignore-contingency", action="store_true")
    p_resolve.add_argument("--list", action="store_true", help="lista los servicios de la UF")

    p_cont = sub.add_parser("contingency")
    p_cont.add_argument("action", choices=["show", "activate", "clear"])
    p_cont.add_argument("--file", type=Path, default=DEFAULT_CONTINGENCY_FILE)
    p_cont.add_argument(
        "--type",
        default=None,
        help="SVCAN, SVCRS, EPEC, FSDA, OFFLINE o 'auto' (SVC de la UF)",
    )
    p_cont.add_argument("--motive", default=None)
    p_cont.add_argument("--uf", default=None)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "sign":
        result = sign_from_xml(
            xml_path=args.xml,
            config_path=args.config,
            contingency_file=args.contingency_file,
            out_path=args.out,
            model=args.model,
        )
        _print_json(result)
        return 0 if result["ok"] else 1

    if args.cmd == "send":
        result = send_from_xml(
            xml_path=args.xml,
            service=args.service,
            config_path=args.config,
            contingency_file=args.contingency_file,
            out_path=args.out,
            model=args.model,
        )
        _print_json(result)
        return 0 if result["ok"] else 1

    if args.cmd == "resolve":
        try:
            if args.list:
                holder = load_contingency(args.contingency_file)
                state = holder.current()
                sigla = args.uf if args.ignore_contingency or not state.active else state.type.catalog_key
                _print_json(ServiceCatalog(args.version).services(sigla, args.env, args.model))
            else:
                _print_json(
                    resolve(
                        service=args.service,
                        uf=args.uf,
                        env=args.env,
                        model=args.model,
                        version=args.version,
                        contingency_file=args.contingency_file,
                        ignore_contingency=args.ignore_contingency,
                    )
                )
        except NFeException as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        return 0

    if args.cmd == "contingency":
        try:
            return _cmd_contingency(args)
        except NFeException as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
