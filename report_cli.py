"""
Production OEE report CLI
=========================
Loads a production export plus the capacity mappings file and prints one
view as JSON, optionally writing every view to an Excel workbook.

Usage:
  python report_cli.py --data production.xlsx --command summary
  python report_cli.py --data production.csv --command reasons --from 2025-03-01 --to 2025-03-31 --weekdays-only
  python report_cli.py --data production.xlsx --command all --output report.xlsx
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime

import pandas as pd

from mapping_config import MappingStore
from production_ingest import FrameSource, load_production_file
from production_service import ProductionQuery, ProductionService
from result_cache import TTLCache
from settings import Settings

logger = logging.getLogger(__name__)

COMMANDS = ["summary", "totals", "by-line", "diagnostics", "reasons", "nameplates", "all"]


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Production OEE + downtime attribution report")
    p.add_argument("--data", required=True, help="Production export (.xlsx or .csv)")
    p.add_argument("--mappings", default=Settings.MAPPINGS_PATH, help="Capacity/alias mappings JSON")
    p.add_argument("--command", default="summary", choices=COMMANDS, help="View to print")
    p.add_argument("--from", dest="date_from", help="First date (YYYY-MM-DD), inclusive")
    p.add_argument("--to", dest="date_to", help="Last date (YYYY-MM-DD), inclusive")
    p.add_argument("--timeframe", help="Named range, e.g. lastWeek, trailing30Days (ignored with --from/--to)")
    p.add_argument("--machine", help="Restrict to one machine / line")
    p.add_argument("--weekdays-only", action="store_true", help="Drop Saturday and Sunday")
    p.add_argument("--kind", default="prod", choices=["prod", "maint"], help="Downtime to attribute")
    p.add_argument("--mode", choices=["equal", "by_count"], help="Override the configured allocation mode")
    p.add_argument("--quality", type=float, default=Settings.OEE_QUALITY, help="Fixed quality rate")
    p.add_argument("--output", help="Also write every view to this .xlsx file")
    return p


def _frame_records(df: pd.DataFrame) -> list[dict]:
    return json.loads(df.to_json(orient="records"))


def build_results(service: ProductionService, query: ProductionQuery) -> dict:
    """Every view for *query*, keyed by sheet name."""
    reasons = service.reasons(query)
    reason_df = pd.DataFrame(reasons.rows, columns=["reason", "hours"])
    totals = service.totals(query)
    return {
        "Daily Summary": service.summary(query),
        "Range Totals": pd.DataFrame([totals]),
        "By Line": service.by_line(query),
        "Downtime Reasons": reason_df,
        "Diagnostics": service.diagnostics(query),
        "Nameplates": service.nameplates(query),
    }


def write_excel(results: dict, output_path: str) -> None:
    logger.info("Writing: %s", output_path)

    with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
        workbook = writer.book

        header_fmt = workbook.add_format({
            "bold": True, "bg_color": "#1B2A4A", "font_color": "white",
            "border": 1, "text_wrap": True, "valign": "vcenter", "font_size": 11
        })
        title_fmt = workbook.add_format({"bold": True, "font_size": 14, "font_color": "#1B2A4A"})
        subtitle_fmt = workbook.add_format({"italic": True, "font_size": 10, "font_color": "#666666"})

        for sheet_name, df in results.items():
            safe_name = sheet_name[:31]
            df.to_excel(writer, sheet_name=safe_name, startrow=2, index=False)
            ws = writer.sheets[safe_name]

            ws.write(0, 0, sheet_name, title_fmt)
            ws.write(1, 0, f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}", subtitle_fmt)

            for col_num, col_name in enumerate(df.columns):
                ws.write(2, col_num, col_name, header_fmt)

            # Auto-width
            for col_num, col_name in enumerate(df.columns):
                max_len = max(
                    df[col_name].astype(str).map(len).max() if len(df) > 0 else 0,
                    len(str(col_name))
                )
                ws.set_column(col_num, col_num, min(max_len + 4, 40))

            # OEE color scale
            if "oee" in df.columns and len(df) > 0:
                col_idx = list(df.columns).index("oee")
                ws.conditional_format(3, col_idx, 2 + len(df), col_idx, {
                    "type": "3_color_scale",
                    "min_color": "#F8696B", "mid_color": "#FFEB84", "max_color": "#63BE7B",
                })

            # Downtime hours, worst in red
            if sheet_name == "Downtime Reasons" and len(df) > 0:
                col_idx = list(df.columns).index("hours")
                ws.conditional_format(3, col_idx, 2 + len(df), col_idx, {
                    "type": "3_color_scale",
                    "min_color": "#63BE7B", "mid_color": "#FFEB84", "max_color": "#F8696B",
                })

        if "Daily Summary" in results:
            writer.sheets["Daily Summary"].activate()

    logger.info("Done! Open: %s", output_path)


def run(args) -> dict:
    frames = load_production_file(args.data)
    store = MappingStore(path=args.mappings)
    service = ProductionService(
        FrameSource(frames.day_records, frames.reason_records),
        store,
        cache=TTLCache(Settings.RESULT_CACHE_TTL_SECONDS),
        quality=args.quality,
    )
    query = ProductionQuery.from_params({
        "from": args.date_from,
        "to": args.date_to,
        "timeframe": args.timeframe,
        "machine": args.machine,
        "weekdaysOnly": args.weekdays_only,
        "kind": args.kind,
        "mode": args.mode,
    })

    if args.command == "summary":
        result = _frame_records(service.summary(query))
    elif args.command == "totals":
        result = service.totals(query)
    elif args.command == "by-line":
        result = _frame_records(service.by_line(query))
    elif args.command == "diagnostics":
        result = _frame_records(service.diagnostics(query))
    elif args.command == "reasons":
        result = service.reasons(query).to_record()
    elif args.command == "nameplates":
        result = _frame_records(service.nameplates(query))
    else:
        result = {
            "totals": service.totals(query),
            "summary": _frame_records(service.summary(query)),
            "reasons": service.reasons(query).to_record(),
        }

    if args.output:
        write_excel(build_results(service, query), args.output)
    return result


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(Settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for problem in Settings.validate():
        logger.warning(problem)

    try:
        result = run(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
