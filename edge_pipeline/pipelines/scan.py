from __future__ import annotations

import argparse
import logging
from pathlib import Path

from edge_pipeline.data.csv_loader import frame_to_candles, load_ohlcv_csv
from edge_pipeline.data.snapshot_loader import load_snapshot_json
from edge_pipeline.execution.signal_writer import write_scan_report, write_signal_json
from edge_pipeline.indicators.atr import latest_atr
from edge_pipeline.runtime.logging_setup import configure_logging
from edge_pipeline.runtime.orchestrator import PipelineContext, run_scan
from edge_pipeline.storage.store import JsonFileStore


def _parse_candle_args(values: list[str]) -> dict[str, str]:
    out = {}
    for v in values:
        tf, sep, path = v.partition("=")
        if not sep or not tf or not path:
            raise ValueError(f"--candles expects TF=PATH, got {v!r}")
        out[tf] = path
    return out


def main() -> int:
    ap = argparse.ArgumentParser(description="Score a multi-timeframe snapshot and publish a confluence signal")
    ap.add_argument("--snapshot", required=True, help="JSON document with per-timeframe setups and market state")
    ap.add_argument("--store", default="edge_store.json")
    ap.add_argument("--candles", action="append", default=[], help="TF=PATH candle CSV, used for ATR risk runs")
    ap.add_argument("--out-dir", default="signals")
    ap.add_argument("--report", default="")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--log-file", default="")
    args = ap.parse_args()

    configure_logging(args.log_file)

    try:
        results = load_snapshot_json(args.snapshot)
        frames = {tf: load_ohlcv_csv(p) for tf, p in _parse_candle_args(args.candles).items()}
        context = PipelineContext.create(JsonFileStore(args.store), seed=args.seed)

        atr_by_tf = {tf: latest_atr(df, context.cfg.atr_period) for tf, df in frames.items()}
        last_candle = None
        if frames:
            freshest = max((df for df in frames.values() if len(df)), key=lambda df: df["time"].iloc[-1], default=None)
            if freshest is not None:
                last_candle = frame_to_candles(freshest.tail(1))[0]

        report = run_scan(context, results, atr_by_timeframe=atr_by_tf, last_candle=last_candle)
        if report.signal is not None:
            path = write_signal_json(report.signal, out_dir=Path(args.out_dir))
            logging.info("signal_written path=%s", path)
        if args.report:
            write_scan_report(report, args.report)
    except Exception:  # noqa: BLE001
        logging.exception("scan_failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
