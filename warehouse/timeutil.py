from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from warehouse.config import settings
from warehouse.error import abort


def get_zone(tz_str: Optional[str]) -> ZoneInfo:
    """tz 为空时用配置里的报表时区。"""
    tz_str = (tz_str or "").strip() or settings.report_timezone
    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError):
        abort(400, "BAD_REQUEST", f"tz 不合法：{tz_str}（例：Europe/Moscow / Asia/Shanghai / UTC）")


def to_utc_naive(dt: datetime, assume_tz: Optional[ZoneInfo] = None) -> datetime:
    # 不带时区的按 assume_tz 解释；最终返回 UTC-naive（和库里一致）
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=assume_tz or timezone.utc)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_dt_or_date(s: str, *, is_end: bool, assume_tz: Optional[ZoneInfo]) -> datetime:
    """
    支持:
      - "YYYY-MM-DD"
      - ISO datetime: "YYYY-MM-DDTHH:MM:SS", "...Z", "...+03:00"
    规则:
      - 日期: start=当地00:00:00, end=次日00:00:00 (左闭右开)
      - datetime: 原样解释
      - 若输入不带时区: 使用 assume_tz；若 assume_tz 也没有，则按 UTC
    """
    s = (s or "").strip()
    if not s:
        abort(400, "BAD_REQUEST", "start/end 不能为空")

    # 1) 纯日期
    if len(s) == 10 and s[4] == "-" and s[7] == "-":
        try:
            d = date.fromisoformat(s)
        except ValueError:
            abort(400, "BAD_REQUEST", f"日期格式错误：{s}，应为 YYYY-MM-DD")
        local_dt = datetime(d.year, d.month, d.day)
        if is_end:
            local_dt = local_dt + timedelta(days=1)
        return to_utc_naive(local_dt, assume_tz)

    # 2) datetime（兼容 Z）
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        abort(400, "BAD_REQUEST", f"时间格式错误：{s}，例：2026-01-12T08:30:00 或 2026-01-12T08:30:00Z")
    return to_utc_naive(dt, assume_tz)


def parse_range(
    start: Optional[str], end: Optional[str], tz: Optional[str] = None
) -> tuple[Optional[datetime], Optional[datetime]]:
    zone = get_zone(tz)
    start_dt = parse_dt_or_date(start, is_end=False, assume_tz=zone) if start else None
    end_dt = parse_dt_or_date(end, is_end=True, assume_tz=zone) if end else None
    if start_dt is not None and end_dt is not None and start_dt >= end_dt:
        abort(400, "BAD_REQUEST", "start 必须早于 end")
    return start_dt, end_dt


def local_day_start(now_utc: datetime, zone: ZoneInfo) -> datetime:
    """now_utc 所在的当地日 00:00，转回 UTC-naive。"""
    local = now_utc.replace(tzinfo=timezone.utc).astimezone(zone)
    return to_utc_naive(datetime(local.year, local.month, local.day), zone)


def local_month_range(now_utc: datetime, zone: ZoneInfo) -> tuple[datetime, datetime]:
    local = now_utc.replace(tzinfo=timezone.utc).astimezone(zone)
    first = datetime(local.year, local.month, 1)
    nxt = datetime(local.year + (local.month == 12), local.month % 12 + 1, 1)
    return to_utc_naive(first, zone), to_utc_naive(nxt, zone)


def local_date(dt_utc: datetime, zone: ZoneInfo) -> date:
    return dt_utc.replace(tzinfo=timezone.utc).astimezone(zone).date()
