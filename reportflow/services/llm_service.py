"""
LLM服务 - 使用LiteLLM集成大语言模型
为 custom 数据源推断表结构并生成模拟报表数据
"""
import os
import json
import asyncio
from typing import List, Dict, Any, Optional
from litellm import acompletion
import litellm

from ..utils.logger import get_logger, log_llm_error
from .dto import ColumnDef, DataSource, ReportConfig, TableDef, generate_id
from .exceptions import CollaboratorError

logger = get_logger(__name__)

COLUMN_TYPES = ("string", "number", "date", "boolean", "currency")


class LLMService:
    """LLM服务类 - 处理所有与大语言模型的交互"""

    def __init__(self, default_model: str = None):
        """
        初始化LLM服务

        Args:
            default_model: 默认使用的模型名称
        """
        self.default_model = default_model or os.getenv(
            "DEFAULT_MODEL",
            "gemini/gemini-2.5-flash"
        )

        # 配置LiteLLM
        litellm.set_verbose = os.getenv("LITELLM_VERBOSE", "False").lower() == "true"

        # 重试配置
        self.max_retries = 3
        self.retry_delay = 1  # 秒

        logger.info(f"LLM服务初始化完成，默认模型: {self.default_model}")

    async def _call_llm_with_retry(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 8192,
        response_format: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        调用LLM并实现重试逻辑

        Args:
            messages: 消息列表
            model: 模型名称
            temperature: 温度参数
            max_tokens: 最大token数
            response_format: 响应格式（如 {"type": "json_object"}）

        Returns:
            LLM响应内容

        Raises:
            CollaboratorError: 重试失败后抛出异常
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"调用LLM (尝试 {attempt + 1}/{self.max_retries}): model={model}")

                kwargs = {
                    "model": model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                }

                if response_format:
                    kwargs["response_format"] = response_format

                response = await acompletion(**kwargs)

                content = response.choices[0].message.content

                logger.debug(f"LLM响应:\n{'=' * 60}\n{content}\n{'=' * 60}")

                # 记录token使用情况
                usage = getattr(response, "usage", None)
                if usage is not None:
                    logger.info(
                        f"Token使用: prompt={usage.prompt_tokens}, "
                        f"completion={usage.completion_tokens}, "
                        f"total={usage.total_tokens}"
                    )

                return content or ""

            except Exception as e:
                last_error = e
                logger.warning(
                    f"LLM调用失败 (尝试 {attempt + 1}/{self.max_retries}): {str(e)}",
                    exc_info=attempt == self.max_retries - 1
                )

                if attempt < self.max_retries - 1:
                    # 指数退避
                    delay = self.retry_delay * (2 ** attempt)
                    logger.debug(f"等待 {delay} 秒后重试...")
                    await asyncio.sleep(delay)

        # 所有重试都失败
        prompt = messages[-1]["content"] if messages else ""
        log_llm_error(logger, model, prompt, last_error)
        raise CollaboratorError("ai", f"LLM服务调用失败: {str(last_error)}", model=model)

    # ============ Schema推断 ============

    async def discover_schema(
        self,
        kind: str,
        name: str,
        context: str = "",
        model: str = None
    ) -> List[TableDef]:
        """
        根据数据库类型、名称和业务描述推断表结构

        生成的表和列都会分配新的ID，并默认对报表作者开放。

        Args:
            kind: 数据库类型描述（如 'postgres', 'custom'）
            name: 数据库名称
            context: 业务背景描述
            model: 使用的模型（可选）

        Returns:
            TableDef列表

        Raises:
            CollaboratorError: 如果调用失败或响应无法解析
        """
        model = model or self.default_model
        logger.info(f"推断数据源结构: kind={kind}, name={name}, model={model}")

        prompt = self._build_schema_prompt(kind, name, context)
        messages = [
            {"role": "system", "content": "You are a database architect. Respond with JSON only."},
            {"role": "user", "content": prompt},
        ]

        response = await self._call_llm_with_retry(
            messages=messages,
            model=model,
            temperature=0.1,
            response_format={"type": "json_object"}
        )

        raw_tables = self._parse_json_list(response, "tables")
        tables = [self._hydrate_table(raw) for raw in raw_tables if isinstance(raw, dict) and raw.get("name")]

        logger.info(f"结构推断完成: {len(tables)} 个表")
        return tables

    def _build_schema_prompt(self, kind: str, name: str, context: str) -> str:
        return f"""Generate a schema for a '{kind}' database named '{name}'.
Context: {context or 'General business database'}.

Constraints:
1. Generate EXACTLY 3 tables.
2. Each table has MAX 5 columns.
3. Descriptions must be concise (< 10 words).
4. sampleValue must be a short string.

Return a JSON object of the form {{"tables": [...]}}.
Each table has: name, alias, description, columns.
Each column has: name, type, alias, description, sampleValue.
Column types must be one of: {", ".join(f'"{t}"' for t in COLUMN_TYPES)}."""

    def _hydrate_table(self, raw: Dict[str, Any]) -> TableDef:
        """为推断出的表和列分配ID，缺省别名使用物理名"""
        columns = []
        for raw_col in raw.get("columns") or []:
            if not isinstance(raw_col, dict) or not raw_col.get("name"):
                continue
            col_type = raw_col.get("type")
            if col_type not in COLUMN_TYPES:
                logger.debug(f"未知列类型 {col_type!r}，按 string 处理: {raw_col.get('name')}")
                col_type = "string"
            sample_value = raw_col.get("sampleValue", raw_col.get("sample_value"))
            columns.append(ColumnDef(
                id=generate_id(),
                name=raw_col["name"],
                type=col_type,
                alias=raw_col.get("alias") or raw_col["name"],
                description=raw_col.get("description") or "",
                sample_value="" if sample_value is None else str(sample_value)
            ))

        return TableDef(
            id=generate_id(),
            name=raw["name"],
            alias=raw.get("alias") or raw["name"],
            description=raw.get("description") or "",
            columns=columns,
            exposed=True
        )

    # ============ 模拟数据生成 ============

    async def generate_report_data(
        self,
        data_source: DataSource,
        report_config: ReportConfig,
        row_count: int = 100,
        model: str = None
    ) -> List[Dict[str, Any]]:
        """
        为 custom 数据源生成报表数据

        Args:
            data_source: 数据源（提供开放的表和视图结构）
            report_config: 报表配置（选中列、过滤、排序）
            row_count: 生成的行数
            model: 使用的模型（可选）

        Returns:
            以物理列名为键的数据行列表

        Raises:
            CollaboratorError: 如果调用失败或响应无法解析
        """
        model = model or self.default_model
        logger.info(
            f"生成报表数据: report={report_config.id}, data_source={data_source.id}, "
            f"rows={row_count}, model={model}"
        )

        prompt = self._build_report_data_prompt(data_source, report_config, row_count)
        messages = [
            {"role": "system", "content": "You generate realistic mock data for business reports. Respond with JSON only."},
            {"role": "user", "content": prompt},
        ]

        response = await self._call_llm_with_retry(
            messages=messages,
            model=model,
            temperature=0.2,
            response_format={"type": "json_object"}
        )

        rows = [row for row in self._parse_json_list(response, "rows") if isinstance(row, dict)]
        logger.info(f"报表数据生成完成: {len(rows)} 行")
        return rows

    def _build_report_data_prompt(self, data_source: DataSource, report_config: ReportConfig, row_count: int) -> str:
        schema_description = "\n\n".join(
            f"Table: {t.name}\nColumns: " + ", ".join(f"{c.name} ({c.type})" for c in t.columns)
            for t in data_source.exposed_tables_and_views()
        )

        requested = []
        for selected in report_config.selected_columns:
            table_def, _ = data_source.find_table(selected.table_id)
            col_def = table_def.find_column(selected.column_id) if table_def else None
            if col_def is not None:
                requested.append(col_def.name)

        filters = json.dumps([f.to_wire() for f in report_config.filters], ensure_ascii=False)
        sorts = json.dumps([s.to_wire() for s in report_config.sorts], ensure_ascii=False)

        return f"""Generate {row_count} rows of realistic mock data for a report.

Data Source Schema:
{schema_description}

Report Requirements:
- Columns needed: {", ".join(requested)}
- Filters to apply (simulated): {filters}
- Sorting: {sorts}

Return a JSON object of the form {{"rows": [...]}}.
Each row is an object whose keys are exactly the requested column names.
Make the data consistent and realistic."""

    def _parse_json_list(self, response: str, wrapper_key: str) -> List[Any]:
        """解析JSON数组，兼容 {wrapper_key: [...]} 包装"""
        text = (response or "").strip()
        if not text:
            return []

        # 去除可能的markdown代码块
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"LLM响应不是有效的JSON: {e}")
            raise CollaboratorError("ai", "AI服务返回了无效的JSON")

        if isinstance(data, dict):
            data = data.get(wrapper_key, [])
        if not isinstance(data, list):
            raise CollaboratorError("ai", "AI服务返回的数据格式不正确")
        return data


# 全局LLM服务实例
_llm_service = None


def get_llm_service() -> LLMService:
    """获取全局LLM服务实例"""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
