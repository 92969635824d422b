"""
日期时间辅助工具
用于统一处理时间序列化，确保前端能正确识别时区
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """
    将 datetime 对象转换为 ISO 8601 格式字符串（带 UTC 时区标识）
    
    Args:
        dt: datetime 对象（可以为 None）
        
    Returns:
        ISO 8601 格式字符串，带 'Z' 后缀表示 UTC 时区
        如果输入为 None，返回 None
        
    Examples:
        >>> dt = datetime(2024, 11, 3, 6, 30, 0)
        >>> to_iso_string(dt)
        '2024-11-03T06:30:00Z'
    """
    if dt is None:
        return None
    
    # 如果 datetime 对象没有时区信息，假设为 UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    
    dt_utc = dt.astimezone(timezone.utc)
    
    # 移除微秒部分以保持简洁
    return dt_utc.replace(microsecond=0).isoformat().replace('+00:00', 'Z')


def utc_now() -> datetime:
    """
    获取当前 UTC 时间（带时区信息）
    
    Returns:
        带 UTC 时区信息的 datetime 对象
    """
    return datetime.now(timezone.utc)


def period_bounds(period: str, today: date) -> Tuple[date, date]:
    """
    计算相对日期区间的半开边界 [start, end)
    
    Args:
        period: today, this_week, this_month, this_year 之一
        today: 基准日期
        
    Returns:
        (start, end) 元组，end 不包含在区间内
        
    Raises:
        ValueError: 如果 period 不受支持
    """
    if period == "today":
        return today, today + timedelta(days=1)
    
    if period == "this_week":
        # 以周一作为一周的开始
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=7)
    
    if period == "this_month":
        start = today.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end
    
    if period == "this_year":
        start = today.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    
    raise ValueError(f"不支持的日期区间: {period}")
