# tools/chave_dv.py
# DV (mod 11) de la chave de acesso NF-e desde la línea de comandos

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.nfe_client.chave_utils import calc_dv_mod11, fix_chave, replace_tp_emis, validate_chave


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="chave_dv")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_calc = sub.add_parser("calc", help="DV de una base de 43 dígitos")
    p_calc.add_argument("base")

    p_check = sub.add_parser("check", help="valida una chave de 44 dígitos")
    p_check.add_argument("chave")

    p_fix = sub.add_parser("fix", help="corrige el DV (y opcionalmente el tpEmis)")
    p_fix.add_argument("chave")
    p_fix.add_argument("--tp-emis", type=int, default=None)

    args = parser.parse_args(argv)

    try:
        if args.cmd == "calc":
            print(calc_dv_mod11(args.base))
            return 0
        if args.cmd == "check":
            ok, dv_orig, dv_calc = validate_chave(args.chave)
            print(f"{'OK' if ok else 'INVALIDA'} dv={dv_orig} esperado={dv_calc}")
            return 0 if ok else 1
        if args.cmd == "fix":
            if args.tp_emis is not None:
                print(replace_tp_emis(args.chave, args.tp_emis))
            else:
                print(fix_chave(args.chave))
            return 0
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
