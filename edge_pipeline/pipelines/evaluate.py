from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

from edge_pipeline.data.csv_loader import frame_to_candles, load_ohlcv_csv
from edge_pipeline.execution.signal_writer import read_signal_json, write_signal_json
from edge_pipeline.runtime.logging_setup import configure_logging
from edge_pipeline.runtime.orchestrator import PipelineContext
from edge_pipeline.storage.store import JsonFileStore


def main() -> int:
    ap = argparse.ArgumentParser(description="Resolve pending predictions and manage published signals")
    ap.add_argument("--store", default="edge_store.json")
    ap.add_argument("--symbol", required=True)
    ap.add_argument("--candles", required=True, help="candle CSV; its last bar is the evaluation candle")
    ap.add_argument("--signals-dir", default="")
    ap.add_argument("--log-file", default="")
    args = ap.parse_args()

    configure_logging(args.log_file)

    try:
        df = load_ohlcv_csv(args.candles)
        if len(df) == 0:
            raise ValueError(f"No candles in {args.candles}")
        context = PipelineContext.create(JsonFileStore(args.store))
        last = frame_to_candles(df.tail(1))[0]

        resolved = context.predictions.evaluate_pending(args.symbol, last)
        for p in resolved:
            logging.info("prediction_resolved id=%s outcome=%s", p.id, p.outcome)

        if args.signals_dir:
            for path in sorted(Path(args.signals_dir).glob("signal_*.json")):
                signal = read_signal_json(path)
                if signal.symbol != args.symbol or signal.is_terminal:
                    continue
                context.lifecycle.update_signal_status(signal, last.close, df)
                write_signal_json(signal, out_dir=args.signals_dir)

        stats = context.predictions.get_stats(args.symbol)
        if stats is not None:
            summary = asdict(stats)
            summary.pop("recent_history", None)
            print(json.dumps(summary, indent=2))
    except Exception:  # noqa: BLE001
        logging.exception("evaluate_failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
