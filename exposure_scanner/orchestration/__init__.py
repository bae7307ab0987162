from .batch_orchestrator import ScanOrchestrator, TableView, ColumnView, batched

__all__ = ["ScanOrchestrator", "TableView", "ColumnView", "batched"]
