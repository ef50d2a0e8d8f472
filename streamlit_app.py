from __future__ import annotations

from pathlib import Path

import streamlit as st

from taxi_meter.csv_io import load_location_samples
from taxi_meter.fare import FARE_PRESETS, format_yen
from taxi_meter.location import ReplayLocationProvider
from taxi_meter.meter import TaxiMeter
from taxi_meter.models import DEFAULT_TZ, DriveHistoryItem
from taxi_meter.store import FilePersistence, HistoryStore
from taxi_meter.timeutils import dt_from_epoch_ms, format_duration


@st.cache_data(show_spinner=False)
def _load_history(history_path: str, mtime: float) -> list[DriveHistoryItem]:
    _ = mtime  # part of cache key so updated files reload automatically
    return HistoryStore(history_path).load_history()


def _replay(
    csv_path: str,
    preset_id: str,
    persistence: FilePersistence | None,
) -> tuple[DriveHistoryItem | None, list[dict[str, object]]]:
    """Replay a track through a meter and collect the fare curve."""

    samples, _ = load_location_samples(csv_path)
    if not samples:
        return None, []

    clock = {"now": samples[0].timestamp_ms}
    provider = ReplayLocationProvider(samples)
    meter = TaxiMeter(provider, persistence, clock=lambda: clock["now"])
    meter.select_preset(preset_id)
    if not meter.start():
        return None, []

    curve: list[dict[str, object]] = []
    t0 = samples[0].timestamp_ms
    while (ts := provider.next_timestamp_ms()) is not None:
        clock["now"] = ts
        provider.step()
        reading = meter.tick()
        curve.append(
            {
                "minutes": round((ts - t0) / 60000.0, 3),
                "fare_yen": reading.fare_yen,
                "distance_km": round(reading.distance_km, 3),
            }
        )
    return meter.finish(), curve


def main() -> None:
    st.set_page_config(page_title="出租车计价器：行程回放与历史", layout="wide")
    st.title("出租车计价器：轨迹回放计价 & 行程历史")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        history_path = st.text_input("行程历史 JSON 路径", value="drive-history-v1.json")
        snapshot_json = st.text_input("行程快照 JSON 路径", value="drive-snapshot-v1.json")

        st.subheader("票价预设")
        preset_ids = [p.id for p in FARE_PRESETS]
        preset_id = st.selectbox(
            "预设",
            preset_ids,
            format_func=lambda pid: next(f"{p.label}（{p.id}）" for p in FARE_PRESETS if p.id == pid),
        )
        preset = next(p for p in FARE_PRESETS if p.id == preset_id)
        st.caption(
            f"起步 {format_yen(preset.base_fare_yen)} / {preset.base_distance_km:g} km；"
            f"每 {round(preset.distance_step_km * 1000)} m +{preset.distance_step_fare_yen}；"
            f"时速 {preset.low_speed_threshold_kmh:g} km 以下每 {preset.low_speed_step_seconds:g} 秒 +{preset.low_speed_step_fare_yen}"
        )

        st.subheader("轨迹回放")
        track_csv = st.text_input("轨迹 CSV 路径", value="sample_data/drive.csv")
        save_history = st.checkbox("回放结果写入历史", value=True)
        run = st.button("开始回放计价", type="primary", use_container_width=True)

    persistence = FilePersistence.from_paths(history_path, snapshot_json)

    if run:
        if not Path(track_csv).exists():
            st.error(f"找不到文件：{track_csv!r}")
        else:
            with st.spinner("正在回放轨迹并计价 ..."):
                item, curve = _replay(track_csv, preset_id, persistence if save_history else None)
            if item is None:
                st.error("轨迹中没有可用的定位点。")
            else:
                st.subheader("回放结果")
                c1, c2, c3, c4 = st.columns(4)
                c1.metric("车费", format_yen(item.fare_yen))
                c2.metric("计价时长", format_duration(item.elapsed_ms))
                c3.metric("距离", f"{item.distance_km:.2f} km")
                c4.metric("有效/过滤点", f"{item.accepted_samples} / {item.filtered_samples}")
                st.line_chart(curve, x="minutes", y="fare_yen", height=280)

    snapshot = persistence.load_snapshot()
    if snapshot is not None:
        saved = dt_from_epoch_ms(snapshot.saved_at_ms, tz_name)
        st.warning(
            f"存在未结束的行程快照（{saved.isoformat(sep=' ', timespec='seconds')}，"
            f"{format_yen(snapshot.fare_runtime.fare_yen)}，{format_duration(snapshot.elapsed_ms)}）。"
            "可用命令行 `python -m taxi_meter simulate --restore` 继续。"
        )
        if st.button("清除快照"):
            persistence.clear_snapshot()
            st.rerun()

    p = Path(history_path)
    if not p.exists():
        st.info("还没有行程历史。回放一条轨迹后会自动生成。")
        return

    try:
        items = _load_history(history_path, p.stat().st_mtime)
    except Exception as exc:
        st.exception(exc)
        return

    st.subheader("汇总")
    total_fare = sum(i.fare_yen for i in items)
    total_km = sum(i.distance_km for i in items)
    total_ms = sum(i.elapsed_ms for i in items)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("行程数", str(len(items)))
    c2.metric("合计车费", format_yen(total_fare))
    c3.metric("合计距离", f"{total_km:.2f} km")
    c4.metric("合计时长", format_duration(total_ms))

    st.subheader("行程明细（新的在前）")
    rows = [
        {
            "start_time": dt_from_epoch_ms(i.started_at_ms, tz_name).isoformat(sep=" ", timespec="seconds"),
            "end_time": dt_from_epoch_ms(i.finished_at_ms, tz_name).isoformat(sep=" ", timespec="seconds"),
            "preset": i.preset_id,
            "fare_yen": i.fare_yen,
            "distance_km": round(i.distance_km, 3),
            "elapsed": format_duration(i.elapsed_ms),
            "pauses": len(i.pause_logs),
            "distance_steps": i.distance_charge_steps,
            "time_steps": i.time_charge_steps,
            "accepted": i.accepted_samples,
            "filtered": i.filtered_samples,
        }
        for i in items
    ]
    st.dataframe(rows, use_container_width=True, height=520)

    st.caption("说明：时速低于阈值的区间按时间计价，其余按距离计价；被噪声过滤的定位点不计费。")


if __name__ == "__main__":
    main()
