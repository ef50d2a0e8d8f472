"""Command-line interface for taxi_meter.

Run:
    python -m taxi_meter simulate --csv drive.csv --preset tokyo
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from taxi_meter.config import MeterConfig, load_presets
from taxi_meter.csv_io import load_location_samples
from taxi_meter.fare import FARE_PRESETS, FarePreset, format_yen
from taxi_meter.location import ReplayLocationProvider
from taxi_meter.meter import TaxiMeter
from taxi_meter.models import DEFAULT_TZ
from taxi_meter.session import SessionState
from taxi_meter.store import FilePersistence
from taxi_meter.timeutils import dt_from_epoch_ms, format_duration

_DEFAULTS = MeterConfig()


def _presets(args: argparse.Namespace) -> tuple[FarePreset, ...]:
    if args.presets_file:
        return load_presets(args.presets_file)
    return FARE_PRESETS


def _config(args: argparse.Namespace) -> MeterConfig:
    return MeterConfig(
        history_path=args.history,
        snapshot_path=args.snapshot,
        tz_name=args.tz,
        snapshot_interval_ms=int(getattr(args, "snapshot_interval", 5.0) * 1000),
    )


def _persistence(cfg: MeterConfig) -> FilePersistence:
    return FilePersistence.from_paths(cfg.history_path, cfg.snapshot_path, cfg.max_history_items)


def _cmd_presets(args: argparse.Namespace) -> int:
    for i, p in enumerate(_presets(args)):
        default = "（默认）" if i == 0 else ""
        print(f"### {p.id} {p.label}{default}")
        print(f"起步价 {format_yen(p.base_fare_yen)}（含 {p.base_distance_km:g} km）")
        print(f"距离：每 {round(p.distance_step_km * 1000)} m +{p.distance_step_fare_yen} 日元")
        print(f"低速：时速 {p.low_speed_threshold_kmh:g} km 以下，每 {p.low_speed_step_seconds:g} 秒 +{p.low_speed_step_fare_yen} 日元")
        print()
    return 0


def _pause_windows(t0: int, offsets_s: list[float], seconds: float) -> list[tuple[int, int]]:
    """Absolute (pause, resume) times in order; overlapping windows are merged."""

    windows: list[tuple[int, int]] = []
    for offset in sorted(offsets_s):
        start = t0 + int(offset * 1000)
        end = t0 + int((offset + seconds) * 1000)
        if windows and start <= windows[-1][1]:
            windows[-1] = (windows[-1][0], max(windows[-1][1], end))
        else:
            windows.append((start, end))
    return windows


def _cmd_simulate(args: argparse.Namespace) -> int:
    cfg = _config(args)
    samples, summary = load_location_samples(args.csv)
    if not samples:
        print(f"CSV中没有可用的定位点：{args.csv}", file=sys.stderr)
        return 1

    # 模拟时钟：跟随轨迹的时间戳前进
    clock = {"now": samples[0].timestamp_ms}
    provider = ReplayLocationProvider(samples)
    persistence = None if args.no_save else _persistence(cfg)
    meter = TaxiMeter(
        provider,
        persistence,
        presets=_presets(args),
        config=cfg,
        clock=lambda: clock["now"],
    )

    if args.restore:
        snap = persistence.load_snapshot() if persistence is not None else None
        if snap is not None:
            clock["now"] = max(clock["now"], snap.saved_at_ms)
        if snap is None or not meter.restore(snap):
            print("没有可恢复的快照（或定位权限被拒绝）", file=sys.stderr)
            return 1
        # 中断前的定位点已经计过费，跳过
        provider.play(snap.saved_at_ms)
        if (ts := provider.next_timestamp_ms()) is not None:
            clock["now"] = max(clock["now"], ts)
        meter.resume()
    else:
        if args.preset:
            if args.preset not in {p.id for p in meter.presets}:
                raise ValueError(f"未知的票价预设：{args.preset!r}")
            meter.select_preset(args.preset)
        if not meter.start():
            print(meter.status_message or "无法开始计价", file=sys.stderr)
            return 1

    t0 = samples[0].timestamp_ms
    pauses = _pause_windows(t0, args.pause_at, args.pause_seconds)
    stop_at_ms = t0 + int(args.stop_at * 1000) if args.stop_at is not None else None

    while (ts := provider.next_timestamp_ms()) is not None:
        if stop_at_ms is not None and ts > stop_at_ms:
            break
        # 两个定位点之间可能跨过多个暂停区间；模拟时钟只前进不后退
        while pauses and ts >= pauses[0][0]:
            pause_ms, resume_ms = pauses[0]
            if meter.state is SessionState.RUNNING:
                clock["now"] = max(clock["now"], pause_ms)
                meter.pause()
            if ts < resume_ms:
                break
            clock["now"] = max(clock["now"], resume_ms)
            meter.resume()
            pauses.pop(0)
        clock["now"] = max(clock["now"], ts)
        provider.step()
        meter.tick()

    reading = meter.reading()
    if stop_at_ms is not None and provider.remaining:
        meter.close()
        print(f"已在 {format_duration(stop_at_ms - t0)} 处中断（快照已保存，可用 --restore 继续）")
        print(f"fare={reading.fare_text} distance={reading.distance_km:.2f}km time={reading.elapsed_text}")
        return 0

    item = meter.finish()
    if item is None:
        return 1

    print("### 计价结果")
    print(f"preset={item.preset_id} fare={format_yen(item.fare_yen)}")
    print(f"distance={item.distance_km:.3f}km time={format_duration(item.elapsed_ms)} pauses={len(item.pause_logs)}")
    print(
        f"accepted={item.accepted_samples} filtered={item.filtered_samples} "
        f"(csv rows={summary.rows_total}, skipped={summary.rows_skipped})"
    )
    print(f"steps: distance={item.distance_charge_steps} time={item.time_charge_steps}")
    if args.json:
        print(json.dumps(item.to_dict(), ensure_ascii=False, indent=2))
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    items = _persistence(_config(args)).load_history()
    if args.limit is not None:
        items = items[: args.limit]
    if args.json:
        print(json.dumps([i.to_dict() for i in items], ensure_ascii=False, indent=2))
        return 0

    if not items:
        print("暂无行程记录")
        return 0
    for item in items:
        start = dt_from_epoch_ms(item.started_at_ms, args.tz)
        print(
            f"{start.isoformat(sep=' ', timespec='seconds')}  {item.preset_id:<8} "
            f"{format_yen(item.fare_yen):>10}  {item.distance_km:6.2f} km  {format_duration(item.elapsed_ms)}"
        )
    return 0


def _cmd_export_history(args: argparse.Namespace) -> int:
    out = _persistence(_config(args)).export_history_as_text(args.out, args.tz)
    print(f"已导出：{out}")
    return 0


def _cmd_snapshot(args: argparse.Namespace) -> int:
    persistence = _persistence(_config(args))
    if args.clear:
        persistence.clear_snapshot()
        print("快照已清除")
        return 0

    snap = persistence.load_snapshot()
    if snap is None:
        print("没有保存中的行程快照")
        return 0
    if args.json:
        print(json.dumps(snap.to_dict(), ensure_ascii=False, indent=2))
        return 0
    saved = dt_from_epoch_ms(snap.saved_at_ms, args.tz)
    print(f"saved_at={saved.isoformat(sep=' ', timespec='seconds')} state={snap.state.value} preset={snap.preset_id}")
    print(
        f"fare={format_yen(snap.fare_runtime.fare_yen)} distance={snap.distance_km:.2f}km "
        f"time={format_duration(snap.elapsed_ms)}"
    )
    return 0


def _add_storage_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--history", type=str, default=_DEFAULTS.history_path, help="行程历史JSON路径")
    p.add_argument("--snapshot", type=str, default=_DEFAULTS.snapshot_path, help="行程快照JSON路径")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA），默认 Asia/Tokyo")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="taxi_meter")
    p.add_argument("-v", "--verbose", action="store_true", help="输出调试日志（包括被过滤的GPS噪点）")
    p.add_argument("--presets-file", type=str, default=None, help="票价预设JSON文件（默认使用内置的东京/大阪）")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_pre = sub.add_parser("presets", help="列出票价预设")
    p_pre.set_defaults(func=_cmd_presets)

    p_sim = sub.add_parser("simulate", help="用轨迹CSV回放一次行程并计价")
    p_sim.add_argument("--csv", type=str, default="drive.csv", help="输入轨迹CSV路径")
    p_sim.add_argument("--preset", type=str, default=None, help="票价预设 id（如 tokyo/osaka）")
    p_sim.add_argument(
        "--pause-at",
        type=float,
        action="append",
        default=[],
        help="在行程开始后第N秒暂停（可重复指定）",
    )
    p_sim.add_argument("--pause-seconds", type=float, default=60.0, help="每次暂停持续的秒数")
    p_sim.add_argument(
        "--stop-at",
        type=float,
        default=None,
        help="在第N秒模拟意外中断（不结束行程，只留下快照）",
    )
    p_sim.add_argument("--restore", action="store_true", help="先从快照恢复中断的行程再继续回放")
    p_sim.add_argument("--snapshot-interval", type=float, default=5.0, help="快照保存间隔（秒）")
    p_sim.add_argument("--no-save", action="store_true", help="不写历史和快照")
    p_sim.add_argument("--json", action="store_true", help="额外输出行程记录JSON")
    _add_storage_args(p_sim)
    p_sim.set_defaults(func=_cmd_simulate)

    p_his = sub.add_parser("history", help="查看行程历史（新的在前）")
    p_his.add_argument("--limit", type=int, default=None, help="只显示最近N条")
    p_his.add_argument("--json", action="store_true", help="输出JSON")
    _add_storage_args(p_his)
    p_his.set_defaults(func=_cmd_history)

    p_exp = sub.add_parser("export-history", help="导出行程历史为文本")
    p_exp.add_argument("--out", type=str, default="drive-history.txt", help="输出文本路径")
    _add_storage_args(p_exp)
    p_exp.set_defaults(func=_cmd_export_history)

    p_snap = sub.add_parser("snapshot", help="查看或清除未结束行程的快照")
    p_snap.add_argument("--clear", action="store_true", help="清除快照")
    p_snap.add_argument("--json", action="store_true", help="输出JSON")
    _add_storage_args(p_snap)
    p_snap.set_defaults(func=_cmd_snapshot)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except ValueError as exc:
        print(f"错误：{exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
