"""
Retail sales pipeline.

raw_retail -> cleaned_retail -> quality_retail -> retail_sales_all_countries
cleaned_retail -> quarantined_retail
quality_retail -> quality_retail_split_by_country

retail_sales_all_countries keeps the latest version of each
(CustomerID, InvoiceNo) by InvoiceDatetime and maintains the gold views
distinct_countries_retail, sales_by_day, sales_by_country and top_ten_customers.
"""

from livetables.core.config import PipelineSettings
from livetables.core.models import Constraint, DataSource
from livetables.core.rules import ConstraintConfigBuilder, ConstraintConfigLoader, ConstraintEvaluator
from livetables.engine import (
    Aggregate,
    AggregateView,
    MergeStage,
    OrderBy,
    SourceStage,
    Stage,
    StageGraph,
    date_trunc_day,
    sum_view,
)
from livetables.observability.logger import get_logger
from livetables.sources import DirectoryConnector
from livetables.transforms import (
    QUARANTINE_CANDIDATE_FIELDS,
    TRANSACTION_FIELDS,
    clean_invoice_dates,
    prepare_quarantine,
    project_quarantine,
)

logger = get_logger(__name__)

RAW_STAGE = "raw_retail"
CLEANED_STAGE = "cleaned_retail"
QUALITY_STAGE = "quality_retail"
QUARANTINE_STAGE = "quarantined_retail"
MERGE_STAGE = "retail_sales_all_countries"
SPLIT_STAGE = "quality_retail_split_by_country"

MERGE_KEYS = ("CustomerID", "InvoiceNo")
MERGE_SEQUENCE = "InvoiceDatetime"
ZORDER_COLUMNS = "CustomerID, InvoiceNo"


def default_quality_constraints() -> list[Constraint]:
    """The quality gate of quality_retail."""
    return (
        ConstraintConfigBuilder()
        .add_required_field("CustomerID", name="has_customer")
        .add_required_field("InvoiceNo", name="has_invoice")
        .add_type_check("InvoiceDatetime", "timestamp", name="valid_date_time", nullable=False)
        .build()
    )


def gold_views() -> list[AggregateView]:
    """Aggregate views maintained over the current-state sales table."""
    return [
        AggregateView(
            name="distinct_countries_retail",
            group_by={"Country": "Country"},
            order_by=(OrderBy("Country"),),
        ),
        sum_view(
            "sales_by_day",
            "Date",
            date_trunc_day("InvoiceDatetime"),
            "Quantity",
            "TotalSales",
            order_by=(OrderBy("Date"),),
        ),
        sum_view(
            "sales_by_country",
            "Country",
            "Country",
            "Quantity",
            "TotalSales",
            order_by=(OrderBy("TotalSales", descending=True), OrderBy("Country")),
        ),
        AggregateView(
            name="top_ten_customers",
            group_by={"CustomerID": "CustomerID"},
            aggregates=(Aggregate("TotalSales", "sum", "Quantity"),),
            order_by=(OrderBy("TotalSales", descending=True), OrderBy("CustomerID")),
            limit=10,
        ),
    ]


def _quality_constraints(settings: PipelineSettings, constraints: list[Constraint] | None) -> list[Constraint]:
    if constraints is not None:
        return constraints
    if settings.constraints_path:
        configured = ConstraintConfigLoader(settings.constraints_path).load_stage(QUALITY_STAGE)
        if configured:
            logger.info(f"Loaded {len(configured)} quality constraint(s) from {settings.constraints_path}")
            return configured
    return default_quality_constraints()


def build_retail_pipeline(
    settings: PipelineSettings,
    connector: DirectoryConnector | None = None,
    constraints: list[Constraint] | None = None,
) -> StageGraph:
    """
    Assemble and validate the retail stage graph.

    Args:
        settings: Pipeline settings
        connector: Ingestion connector (defaults to a DirectoryConnector)
        constraints: Quality gate constraints; overrides settings.constraints_path

    Returns:
        Validated StageGraph

    Raises:
        GraphDefinitionError, ConstraintConfigError, SchemaError: On invalid definitions
    """
    gate = ConstraintEvaluator(_quality_constraints(settings, constraints), stage_name=QUALITY_STAGE)

    graph = StageGraph(settings.storage_path, max_workers=settings.max_workers)

    graph.add_stage(SourceStage(
        name=RAW_STAGE,
        data_source=DataSource(
            source_id="online_retail",
            location=settings.data_source_path,
            file_format=settings.source_format,
            schema_ddl=settings.source_schema,
            read_options=settings.read_options,
        ),
        connector=connector or DirectoryConnector(),
        source_field="inputFileName",
        partition_by="Country",
        trigger_interval=settings.interval_for(RAW_STAGE),
        properties={"quality": "bronze"},
        comment="Raw input data read incrementally from the source directory, no expectations",
    ))

    graph.add_stage(Stage(
        name=CLEANED_STAGE,
        upstreams=(RAW_STAGE,),
        partition_by="Country",
        trigger_interval=settings.interval_for(CLEANED_STAGE),
        properties={"quality": "bronze", "zOrderCols": ZORDER_COLUMNS},
        comment="Bronze table partitioned by Country",
    ))

    graph.add_stage(Stage(
        name=QUALITY_STAGE,
        upstreams=(CLEANED_STAGE,),
        transform=clean_invoice_dates,
        constraints=gate,
        output_fields=TRANSACTION_FIELDS,
        partition_by="Country",
        trigger_interval=settings.interval_for(QUALITY_STAGE),
        properties={"quality": "silver", "zOrderCols": ZORDER_COLUMNS},
        comment="Cleaned invoice dates with quality expectations enforced",
    ))

    graph.add_stage(Stage(
        name=QUARANTINE_STAGE,
        upstreams=(CLEANED_STAGE,),
        transform=prepare_quarantine,
        constraints=gate.complement(QUARANTINE_STAGE),
        finalize=project_quarantine,
        output_fields=QUARANTINE_CANDIDATE_FIELDS,
        trigger_interval=settings.interval_for(QUARANTINE_STAGE),
        properties={"quality": "bronze", "zOrderCols": ZORDER_COLUMNS},
        comment="Rows failing at least one quality expectation, kept for inspection",
    ))

    graph.add_stage(MergeStage(
        name=MERGE_STAGE,
        upstreams=(QUALITY_STAGE,),
        key_fields=MERGE_KEYS,
        sequence_field=MERGE_SEQUENCE,
        views=gold_views(),
        trigger_interval=settings.interval_for(MERGE_STAGE),
        properties={"quality": "silver", "zOrderCols": ZORDER_COLUMNS},
        comment="Latest version of every invoice line per customer",
    ))

    graph.add_stage(Stage(
        name=SPLIT_STAGE,
        upstreams=(QUALITY_STAGE,),
        constraints=ConstraintEvaluator(gate.constraints, stage_name=SPLIT_STAGE),
        output_fields=TRANSACTION_FIELDS,
        partition_by="Country",
        trigger_interval=settings.interval_for(SPLIT_STAGE),
        properties={"quality": "silver", "zOrderCols": ZORDER_COLUMNS},
        comment="quality_retail re-partitioned by Country",
    ))

    return graph.validate()
