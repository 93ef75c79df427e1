import argparse
import asyncio
import json
import logging
import os
from typing import Optional

from config import DEFAULT_DB_PATH
from rest_api import FitPlanAPI

EXPORT_FILES = {
    "sessions": "fitplan_sessions.csv",
    "setLogs": "fitplan_setlogs.csv",
    "metrics": "fitplan_metrics.csv",
}


def _print(data) -> None:
    print(json.dumps(data, indent=2))


def show_status(api: FitPlanAPI, date: Optional[str]) -> dict:
    return asyncio.run(api.sessions.status(date))


def show_stats(api: FitPlanAPI, date: Optional[str]) -> dict:
    return asyncio.run(api.sessions.stats(date))


def log_rest(api: FitPlanAPI, date: Optional[str]) -> dict:
    return asyncio.run(api.sessions.log_rest(date))


def backup(api: FitPlanAPI, out_path: str) -> None:
    data = asyncio.run(api.backup.dumps())
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(data)


def restore(api: FitPlanAPI, in_path: str, date: Optional[str]) -> dict:
    with open(in_path, "r", encoding="utf-8") as f:
        text = f.read()
    return asyncio.run(api.backup.import_snapshot(text, date))


def export_csv(api: FitPlanAPI, output_dir: str = ".") -> list[str]:
    os.makedirs(output_dir, exist_ok=True)
    written = []
    for kind, filename in EXPORT_FILES.items():
        data = asyncio.run(api.backup.export_csv(kind))
        out_path = os.path.join(output_dir, filename)
        with open(out_path, "w", encoding="utf-8", newline="") as f:
            f.write(data)
        written.append(out_path)
    return written


def write_template(api: FitPlanAPI, out_path: str) -> None:
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        f.write(api.backup.template_csv())


def import_template(api: FitPlanAPI, csv_path: str) -> dict:
    with open(csv_path, "r", encoding="utf-8", newline="") as f:
        text = f.read()
    return asyncio.run(api.backup.import_template(text))


def rebuild(api: FitPlanAPI, date: Optional[str]) -> dict:
    return asyncio.run(api.sessions.rebuild_cycle(date)).to_dict()


def serve(api: FitPlanAPI, host: str, port: int) -> None:
    import uvicorn

    uvicorn.run(api.app, host=host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FitPlan utility commands")
    parser.add_argument("--db", default=DEFAULT_DB_PATH)
    parser.add_argument("--yaml", default="settings.yaml")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    st = sub.add_parser("status")
    st.add_argument("--date")

    sts = sub.add_parser("stats")
    sts.add_argument("--date")

    rest = sub.add_parser("rest")
    rest.add_argument("--date")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="fitplan_backup.json")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", required=True)
    rst.add_argument("--date")

    exp = sub.add_parser("export-csv")
    exp.add_argument("--out-dir", default=".")

    tpl = sub.add_parser("template")
    tpl.add_argument("--out", default="fitplan_template.csv")

    imp = sub.add_parser("import-template")
    imp.add_argument("--csv", required=True)

    rb = sub.add_parser("rebuild")
    rb.add_argument("--date")

    srv = sub.add_parser("serve")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    api = FitPlanAPI(db_path=args.db, yaml_path=args.yaml)

    try:
        if args.cmd == "status":
            _print(show_status(api, args.date))
        elif args.cmd == "stats":
            _print(show_stats(api, args.date))
        elif args.cmd == "rest":
            _print(log_rest(api, args.date))
        elif args.cmd == "backup":
            backup(api, args.out)
            print(f"Backup written to {args.out}")
        elif args.cmd == "restore":
            _print(restore(api, args.src, args.date))
        elif args.cmd == "export-csv":
            for path in export_csv(api, args.out_dir):
                print(path)
        elif args.cmd == "template":
            write_template(api, args.out)
            print(f"Template written to {args.out}")
        elif args.cmd == "import-template":
            _print(import_template(api, args.csv))
        elif args.cmd == "rebuild":
            _print(rebuild(api, args.date))
        elif args.cmd == "serve":
            serve(api, args.host, args.port)
    except ValueError as e:
        parser.exit(2, f"error: {e}\n")
    return 0


if __name__ == "__main__":
    main()
