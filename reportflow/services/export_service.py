"""
导出服务
提供Excel和PDF格式的报表导出功能

导出内容是已经过格式化的数据行（以展示名为键），与页面展示使用同一套渲染结果。
"""
import platform
import re
from datetime import date, datetime
from io import BytesIO
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.lib.enums import TA_CENTER

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill, Border, Side
from openpyxl.utils import get_column_letter

from .exceptions import ExportError
from ..utils.logger import get_logger

logger = get_logger(__name__)

SHEET_NAME = "Report"

# 各平台的CJK字体候选路径
_CJK_FONTS = {
    "Darwin": "/System/Library/Fonts/PingFang.ttc",
    "Windows": "C:\\Windows\\Fonts\\simsun.ttc",
    "Linux": "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
}


def build_export_filename(report_name: Optional[str], extension: str, today: Optional[date] = None) -> str:
    """
    生成导出文件名：非字母数字字符序列替换为单个下划线，后缀为当前日期

    Args:
        report_name: 报表名称
        extension: 扩展名（不含点），如 'xlsx'
        today: 日期，默认当天

    Returns:
        文件名，如 'Q3_Sales_2024-07-01.xlsx'
    """
    stem = re.sub(r"[^a-z0-9]+", "_", report_name or "", flags=re.IGNORECASE) or "report"
    today = today or date.today()
    return f"{stem}_{today.isoformat()}.{extension}"


class ExportDocument:
    """待导出的报表数据"""
    def __init__(
        self,
        title: str,
        headers: List[str],
        rows: List[Dict[str, str]],
        data_origin: Optional[str] = None
    ):
        self.title = title
        self.headers = headers
        self.rows = rows
        self.data_origin = data_origin
        self.generated_at = datetime.now()


class ExportService:
    """导出服务类"""

    def __init__(self):
        """初始化导出服务"""
        self._pdf_font: Optional[str] = None
        logger.info("导出服务初始化完成")

    def _check_document(self, document: ExportDocument):
        if not document.rows:
            raise ExportError("No data to export.")

    def export_to_excel(self, document: ExportDocument) -> bytes:
        """
        生成Excel文件（单个工作表 Report，首行为展示名）

        Args:
            document: 导出数据

        Returns:
            Excel文件的字节数据

        Raises:
            ExportError: 如果没有可导出的数据
        """
        self._check_document(document)

        logger.info(
            f"开始生成Excel: title='{document.title}', "
            f"rows={len(document.rows)}, cols={len(document.headers)}"
        )

        wb = Workbook()
        ws = wb.active
        ws.title = SHEET_NAME

        header_font = Font(name='Arial', size=11, bold=True, color='FFFFFF')
        header_fill = PatternFill(start_color='3B82F6', end_color='3B82F6', fill_type='solid')
        header_alignment = Alignment(horizontal='center', vertical='center')
        data_font = Font(name='Arial', size=10)
        border = Border(
            left=Side(style='thin', color='E5E7EB'),
            right=Side(style='thin', color='E5E7EB'),
            top=Side(style='thin', color='E5E7EB'),
            bottom=Side(style='thin', color='E5E7EB')
        )

        for col_idx, header in enumerate(document.headers, 1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = border

        for row_idx, row_data in enumerate(document.rows, 2):
            for col_idx, header in enumerate(document.headers, 1):
                cell = ws.cell(row=row_idx, column=col_idx, value=row_data.get(header, ''))
                cell.font = data_font
                cell.border = border

        # 自动调整列宽（只检查前100行）
        for col_idx, header in enumerate(document.headers, 1):
            max_length = len(str(header))
            for row_data in document.rows[:100]:
                max_length = max(max_length, len(str(row_data.get(header, ''))))
            ws.column_dimensions[get_column_letter(col_idx)].width = min(max_length + 2, 50)

        ws.freeze_panes = 'A2'

        buffer = BytesIO()
        wb.save(buffer)
        excel_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"Excel生成完成: size={len(excel_bytes)} bytes")
        return excel_bytes

    def _resolve_pdf_font(self) -> str:
        """注册系统CJK字体，找不到时使用 Helvetica"""
        if self._pdf_font is not None:
            return self._pdf_font

        font_path = _CJK_FONTS.get(platform.system())
        self._pdf_font = 'Helvetica'
        if font_path:
            try:
                pdfmetrics.registerFont(TTFont('ReportCJK', font_path))
                self._pdf_font = 'ReportCJK'
            except (TTFError, OSError, ValueError) as e:
                logger.warning(f"无法加载CJK字体，使用默认字体: {e}")
        return self._pdf_font

    def export_to_pdf(self, document: ExportDocument, max_rows: int = 500) -> bytes:
        """
        生成PDF文件：标题、生成时间、数据表格

        Args:
            document: 导出数据
            max_rows: 表格最大行数（避免PDF过大）

        Returns:
            PDF文件的字节数据

        Raises:
            ExportError: 如果没有可导出的数据
        """
        self._check_document(document)

        logger.info(
            f"开始生成PDF: title='{document.title}', "
            f"rows={len(document.rows)}, cols={len(document.headers)}"
        )

        font_name = self._resolve_pdf_font()
        pagesize = landscape(A4) if len(document.headers) > 6 else A4

        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=pagesize,
            rightMargin=0.5*inch,
            leftMargin=0.5*inch,
            topMargin=0.75*inch,
            bottomMargin=0.5*inch
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            'ReportTitle',
            parent=styles['Heading1'],
            fontName=font_name,
            fontSize=18,
            textColor=colors.HexColor('#1f2937'),
            spaceAfter=12,
            alignment=TA_CENTER
        )
        meta_style = ParagraphStyle(
            'ReportMeta',
            parent=styles['Normal'],
            fontName=font_name,
            fontSize=9,
            textColor=colors.HexColor('#6b7280'),
            alignment=TA_CENTER
        )

        meta_text = f"Generated: {document.generated_at.strftime('%Y-%m-%d %H:%M:%S')}"
        if document.data_origin == 'ai':
            meta_text += " · AI-generated data"

        story = [
            Paragraph(escape(document.title), title_style),
            Paragraph(meta_text, meta_style),
            Spacer(1, 0.25*inch),
        ]

        display_rows = document.rows[:max_rows]
        table_data = [list(document.headers)]
        for row in display_rows:
            values = []
            for header in document.headers:
                text = str(row.get(header, ''))
                if len(text) > 50:
                    text = text[:47] + '...'
                values.append(text)
            table_data.append(values)

        col_width = doc.width / max(len(document.headers), 1)
        table = Table(table_data, colWidths=[col_width] * len(document.headers), repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#3b82f6')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, -1), font_name),
            ('FONTSIZE', (0, 0), (-1, 0), 10),
            ('FONTSIZE', (0, 1), (-1, -1), 8),
            ('TOPPADDING', (0, 0), (-1, -1), 5),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#e5e7eb')),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f9fafb')]),
        ]))
        story.append(table)

        if len(document.rows) > max_rows:
            story.append(Spacer(1, 0.1*inch))
            story.append(Paragraph(f"Showing {max_rows} of {len(document.rows)} rows", meta_style))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"PDF生成完成: size={len(pdf_bytes)} bytes")
        return pdf_bytes


# 全局导出服务实例
_export_service = None


def get_export_service() -> ExportService:
    """
    获取全局导出服务实例

    Returns:
        ExportService实例
    """
    global _export_service

    if _export_service is None:
        _export_service = ExportService()

    return _export_service
