"""
列格式化服务
生成列类型的默认格式化配置，并将原始值渲染为展示字符串。
页面展示和文件导出共用同一套渲染逻辑，保证两者结果一致。
"""
import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Dict, Iterable, List, Optional

from .dto import (
    BooleanFormatting,
    BooleanFormattingConfig,
    CurrencyFormatting,
    CurrencyFormattingConfig,
    DateFormatting,
    DateFormattingConfig,
    DisplayColumn,
    FormattingConfig,
    NumberFormatting,
    NumberFormattingConfig,
    StringFormatting,
    StringFormattingConfig,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


DATE_PATTERNS = {
    'MM/DD/YYYY': '%m/%d/%Y',
    'DD/MM/YYYY': '%d/%m/%Y',
    'YYYY-MM-DD': '%Y-%m-%d',
}

# 其他格式统一使用本地化的完整日期时间
FALLBACK_DATE_PATTERN = '%c'

# 非ISO字符串日期的解析尝试顺序
_DATE_INPUT_PATTERNS = ('%m/%d/%Y', '%Y/%m/%d', '%b %d, %Y', '%B %d, %Y', '%m/%d/%Y %H:%M:%S')

BOOLEAN_STYLES = {
    'true/false': ('true', 'false'),
    'yes/no': ('Yes', 'No'),
    '1/0': ('1', '0'),
    'check/x': ('✓', '✗'),
    '✓/✗': ('✓', '✗'),
    'enabled/disabled': ('Enabled', 'Disabled'),
}


def default_formatting(column_type: Optional[str]) -> FormattingConfig:
    """
    获取列类型的默认格式化配置

    Args:
        column_type: 列类型，未知类型按字符串处理

    Returns:
        与列类型匹配的格式化配置
    """
    if column_type == 'date':
        return DateFormatting(config=DateFormattingConfig(format='MM/DD/YYYY'))
    if column_type == 'number':
        return NumberFormatting(
            config=NumberFormattingConfig(decimal_places=2, thousand_separator=True)
        )
    if column_type == 'currency':
        return CurrencyFormatting(
            config=CurrencyFormattingConfig(
                symbol='$',
                decimal_places=2,
                thousand_separator=True,
                symbol_position='before'
            )
        )
    if column_type == 'boolean':
        return BooleanFormatting(config=BooleanFormattingConfig(style='true/false'))
    return StringFormatting(config=StringFormattingConfig(case='none'))


def matches_column_type(formatting: Optional[FormattingConfig], column_type: Optional[str]) -> bool:
    """格式化配置的类型标签必须与列类型一致（none 除外）"""
    if formatting is None or formatting.type == 'none':
        return True
    return formatting.type == (column_type or 'string')


def render(raw: Any, formatting: Optional[FormattingConfig] = None, column_type: Optional[str] = None) -> str:
    """
    将原始值渲染为展示字符串，任何输入都不会抛出异常

    Args:
        raw: 原始值
        formatting: 格式化配置，None 表示不格式化
        column_type: 列类型，仅用于诊断类型标签不一致的配置

    Returns:
        展示字符串；None 渲染为空字符串
    """
    if raw is None:
        return ""

    if formatting is None or formatting.type == 'none':
        return _literal(raw)

    if not matches_column_type(formatting, column_type):
        logger.debug(f"格式化类型与列类型不一致: formatting={formatting.type}, column={column_type}")

    try:
        if formatting.type == 'date':
            return _render_date(raw, formatting.config)
        if formatting.type == 'number':
            return _render_number(raw, formatting.config)
        if formatting.type == 'currency':
            return _render_currency(raw, formatting.config)
        if formatting.type == 'boolean':
            return _render_boolean(raw, formatting.config)
        if formatting.type == 'string':
            return _render_string(raw, formatting.config)
    except (ValueError, TypeError, ArithmeticError, OverflowError) as e:
        logger.debug(f"格式化失败，使用原始值: value={raw!r}, error={e}")

    return _literal(raw)


def format_row(row: Optional[Dict[str, Any]], columns: Iterable[DisplayColumn]) -> Dict[str, str]:
    """
    按展示列渲染一行数据，结果以展示名为键

    Args:
        row: 以物理列名为键的原始数据行
        columns: 展示列列表

    Returns:
        以展示名为键的格式化结果
    """
    row = row or {}
    return {
        col.label: render(row.get(col.key), col.formatting, col.type)
        for col in columns
    }


def format_rows(rows: Iterable[Optional[Dict[str, Any]]], columns: List[DisplayColumn]) -> List[Dict[str, str]]:
    """渲染多行数据"""
    return [format_row(row, columns) for row in rows]


# ============ 内部渲染函数 ============

def _literal(raw: Any) -> str:
    if isinstance(raw, bool):
        return 'true' if raw else 'false'
    if isinstance(raw, (dict, list, tuple)):
        try:
            return json.dumps(raw, ensure_ascii=False, separators=(',', ':'), default=str)
        except (TypeError, ValueError) as e:
            # 非字符串键或循环引用
            logger.debug(f"JSON序列化失败，使用str: error={e}")
    try:
        return str(raw)
    except ValueError:
        # 超出整数转字符串位数限制
        if isinstance(raw, int):
            return str(Decimal(raw))
        return object.__repr__(raw)
    except Exception as e:
        logger.debug(f"值无法转换为字符串: type={type(raw).__name__}, error={e}")
        return object.__repr__(raw)


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        parsed = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, (int, float, Decimal)):
        # 数值按毫秒时间戳处理
        try:
            parsed = datetime.fromtimestamp(float(raw) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(raw, str):
        parsed = _parse_date_string(raw.strip())
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed


def _parse_date_string(text: str) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for pattern in _DATE_INPUT_PATTERNS:
        try:
            return datetime.strptime(text, pattern)
        except ValueError:
            continue
    return None


def _render_date(raw: Any, config: DateFormattingConfig) -> str:
    parsed = _parse_timestamp(raw)
    if parsed is None:
        return _literal(raw)
    pattern = DATE_PATTERNS.get(config.format, FALLBACK_DATE_PATTERN)
    return parsed.strftime(pattern)


def _to_decimal(raw: Any) -> Optional[Decimal]:
    if isinstance(raw, bool):
        return Decimal(int(raw))
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        # 使用最短表示，避免二进制浮点误差
        value = Decimal(repr(raw))
    elif isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not value.is_finite():
        return None
    return value


def _format_decimal(value: Decimal, decimal_places: int, thousand_separator: bool) -> str:
    with localcontext() as ctx:
        ctx.prec = 80
        quantized = value.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)
    if thousand_separator:
        return f"{quantized:,.{decimal_places}f}"
    return f"{quantized:.{decimal_places}f}"


def _render_number(raw: Any, config: NumberFormattingConfig) -> str:
    value = _to_decimal(raw)
    if value is None:
        return _literal(raw)
    text = _format_decimal(value, config.decimal_places, config.thousand_separator)
    return f"{config.prefix or ''}{text}{config.suffix or ''}"


def _render_currency(raw: Any, config: CurrencyFormattingConfig) -> str:
    value = _to_decimal(raw)
    if value is None:
        return _literal(raw)
    text = _format_decimal(value, config.decimal_places, config.thousand_separator)
    symbol = config.symbol or '$'
    if config.symbol_position == 'after':
        return f"{text}{symbol}"
    return f"{symbol}{text}"


def _truthy(raw: Any) -> bool:
    if isinstance(raw, float) and math.isnan(raw):
        return False
    return bool(raw)


def _render_boolean(raw: Any, config: BooleanFormattingConfig) -> str:
    true_text, false_text = BOOLEAN_STYLES.get(config.style, BOOLEAN_STYLES['true/false'])
    return true_text if _truthy(raw) else false_text


def _render_string(raw: Any, config: StringFormattingConfig) -> str:
    text = _literal(raw)
    if config.case == 'uppercase':
        text = text.upper()
    elif config.case == 'lowercase':
        text = text.lower()
    elif config.case == 'capitalize':
        text = text[:1].upper() + text[1:]

    if config.truncate and config.truncate > 0 and len(text) > config.truncate:
        text = text[:config.truncate] + '…'
    return text
