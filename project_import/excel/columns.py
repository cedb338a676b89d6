from __future__ import annotations

from collections.abc import Sequence
from typing import Any

"""Column mapping: worksheet header text -> canonical field key.

The header dictionary doubles as the template layout (its insertion order is
the column order of the downloadable template and of the correction sheet in
the error report). Unknown headers map to None and are ignored.
"""

__all__ = [
    "COLUMN_MAPPING",
    "TEMPLATE_HEADERS",
    "TEMPLATE_EXAMPLE_ROW",
    "map_headers",
]

COLUMN_MAPPING: dict[str, str] = {
    "ID": "external_id",
    "Title": "title",
    "Descripcion Servicio": "service_description",
    "Estatus General": "general_status",
    "Proximos Pasos": "next_steps",
    "Mentor": "mentor",
    "Fecha Asignacion": "assignment_date",
    "Etapa de Proyecto": "project_stage",
    "Riesgo": "risk",
    "Tipo de Proyecto": "project_type",
    "Tabla Resumen": "summary_table",
    "Coordinador": "coordinator",
    "Linea de Negocios": "business_line",
    "Tipo de Oportunidad": "opportunity_type",
    "¿Proyecto Estrategico?": "is_strategic_project",
    "Tipo de Riesgo": "risk_types",
    "Fecha Termino Estimada": "estimated_end_date",
    "Actualizacion Fecha Termino Estimada": "updated_estimated_end_date",
    "Fecha de Termino Real": "actual_end_date",
    "Control Presupuestal": "budget_control",
    "Monto Total del Contrato MXN": "total_contract_amount_mxn",
    "Ingreso": "income",
    "Periodo Contratacion (Meses)": "contract_period_months",
    "Facturacion Mensual MXN": "monthly_billing_mxn",
    "Penalizacion": "penalty",
    "Proveedores Involucrados": "suppliers",
    "Fecha Fallo/Adjudicacion": "award_date",
    "Fecha Transferencia Diseño": "design_transfer_date",
    "Fecha de entrega por Licitacion": "tender_delivery_date",
    "Segmento": "segment",
    "Gerencia de Ventas": "sales_management",
    "Ejecutivo Ventas": "sales_executive",
    "Diseñador": "designer",
    "Orden de Siebel/Numero de Proceso": "siebel_order_number",
    "Orden en Progreso": "order_in_progress",
    "Ordenes Relacionadas (Siebel)": "related_orders",
    "¿Aplica Control de Cambios?": "applies_change_control",
    "Justificación": "justification",
    "SharePoint Documentacion": "sharepoint_documentation",
    "Respositorio Estratel": "estratel_repository",
}

TEMPLATE_HEADERS: list[str] = list(COLUMN_MAPPING)

TEMPLATE_EXAMPLE_ROW: list[Any] = [
    1,
    "Proyecto Ejemplo",
    "Descripción del servicio ejemplo",
    "En progreso",
    "Definir próximos pasos",
    "Juan Pérez;#123",
    "2025-07-30",
    "Implementación",
    "Medio",
    "PROYECTO",
    "Tabla de resumen del proyecto",
    "María García;#456",
    "TELCO",
    "Renovacion",
    "NO",
    "Operativo;Tiempo",
    "2025-12-31",
    "2025-12-31",
    "",
    "Estándar",
    1500000.00,
    1500000.00,
    12,
    125000.00,
    "5% por día de retraso",
    "Proveedor A, Proveedor B",
    "2025-06-15",
    "2025-07-01",
    "2025-12-31",
    "Federal",
    "Gerencia Norte",
    "Carlos López;#789",
    "Ana Martínez;#101",
    "1-2EXAMPLE",
    "NO",
    "1-2RELATED",
    "SI",
    "Proyecto crítico",
    "https://sharepoint.com/docs",
    "https://estratel.com/repo",
]


def map_headers(
    headers: Sequence[Any], mapping: dict[str, str] | None = None
) -> list[str | None]:
    """Map each header cell (by column index) to its canonical key, or None.

    Matching is exact after stripping surrounding whitespace; non-string
    header cells (numbers, blanks) never match.
    """
    mapping = COLUMN_MAPPING if mapping is None else mapping
    keys: list[str | None] = []
    for raw in headers:
        if isinstance(raw, str):
            keys.append(mapping.get(raw.strip()))
        else:
            keys.append(None)
    return keys
