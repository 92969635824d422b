"""
过滤操作符兼容性矩阵
根据列的语义类型给出合法的过滤操作符以及每个操作符需要的取值个数
"""
from typing import Dict, List, NamedTuple, Optional


class OperatorOption(NamedTuple):
    """操作符选项"""
    value: str
    label: str


_STRING_OPERATORS = [
    OperatorOption('equals', 'Equals'),
    OperatorOption('not_equals', 'Not Equals'),
    OperatorOption('contains', 'Contains'),
    OperatorOption('not_contains', 'Does Not Contain'),
    OperatorOption('starts_with', 'Starts With'),
    OperatorOption('ends_with', 'Ends With'),
    OperatorOption('is_empty', 'Is Empty'),
    OperatorOption('is_not_empty', 'Is Not Empty'),
    OperatorOption('in', 'In List'),
]

_NUMERIC_OPERATORS = [
    OperatorOption('equals', 'Equals'),
    OperatorOption('not_equals', 'Not Equals'),
    OperatorOption('gt', 'Greater Than'),
    OperatorOption('gte', 'Greater Than or Equal'),
    OperatorOption('lt', 'Less Than'),
    OperatorOption('lte', 'Less Than or Equal'),
    OperatorOption('between', 'Between'),
    OperatorOption('is_null', 'Is Null'),
    OperatorOption('is_not_null', 'Is Not Null'),
]

_DATE_OPERATORS = [
    OperatorOption('equals', 'On Date'),
    OperatorOption('not_equals', 'Not On Date'),
    OperatorOption('gt', 'After'),
    OperatorOption('gte', 'On or After'),
    OperatorOption('lt', 'Before'),
    OperatorOption('lte', 'On or Before'),
    OperatorOption('between', 'Between Dates'),
    OperatorOption('is_null', 'Is Null'),
    OperatorOption('is_not_null', 'Is Not Null'),
    OperatorOption('today', 'Is Today'),
    OperatorOption('this_week', 'This Week'),
    OperatorOption('this_month', 'This Month'),
    OperatorOption('this_year', 'This Year'),
]

_BOOLEAN_OPERATORS = [
    OperatorOption('equals', 'Is'),
    OperatorOption('is_null', 'Is Null'),
    OperatorOption('is_not_null', 'Is Not Null'),
]

_FALLBACK_OPERATORS = [
    OperatorOption('equals', 'Equals'),
    OperatorOption('not_equals', 'Not Equals'),
    OperatorOption('contains', 'Contains'),
    OperatorOption('is_null', 'Is Null'),
    OperatorOption('is_not_null', 'Is Not Null'),
]

OPERATOR_MATRIX: Dict[str, List[OperatorOption]] = {
    'string': _STRING_OPERATORS,
    'number': _NUMERIC_OPERATORS,
    'currency': _NUMERIC_OPERATORS,
    'date': _DATE_OPERATORS,
    'boolean': _BOOLEAN_OPERATORS,
}

NO_VALUE_OPERATORS = frozenset({
    'is_null', 'is_not_null', 'is_empty', 'is_not_empty',
    'today', 'this_week', 'this_month', 'this_year',
})

PERIOD_OPERATORS = frozenset({'today', 'this_week', 'this_month', 'this_year'})


def operators_for(column_type: Optional[str]) -> List[OperatorOption]:
    """
    获取列类型可用的过滤操作符（有序）

    Args:
        column_type: 列类型，未知类型使用兜底操作符集合

    Returns:
        操作符选项列表（返回副本，调用方可以自由修改）
    """
    return list(OPERATOR_MATRIX.get(column_type or '', _FALLBACK_OPERATORS))


def default_operator_for(column_type: Optional[str]) -> str:
    """列类型的默认操作符（矩阵中的第一个）"""
    return operators_for(column_type)[0].value


def is_operator_allowed(column_type: Optional[str], operator: str) -> bool:
    return any(option.value == operator for option in operators_for(column_type))


def needs_value_input(operator: str) -> bool:
    """操作符是否需要用户输入取值"""
    return operator not in NO_VALUE_OPERATORS


def needs_two_values(operator: str) -> bool:
    """操作符是否需要两个取值（区间）"""
    return operator == 'between'


def operator_arity(operator: str) -> int:
    """操作符需要的取值个数：0、1或2"""
    if not needs_value_input(operator):
        return 0
    return 2 if needs_two_values(operator) else 1
