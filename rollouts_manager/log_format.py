"""
JSON log format that tags every record with the RolloutManager being
reconciled
"""

# First Party
from alog import AlogJsonFormatter

# Record attribute -> metadata key of the reconciled resource
_METADATA_FIELDS = {
    "namespace": "namespace",
    "resourceName": "name",
    "resourceVersion": "resourceVersion",
}


class RolloutsManagerJsonFormatter(AlogJsonFormatter):
    """AlogJsonFormatter with thread details, the reconcile id and the kind,
    namespace, name and resourceVersion of the resource. The resource comes
    from the record's "resource" extra if present, otherwise from the CR the
    formatter was configured with.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "threadName",
        "kind",
        *_METADATA_FIELDS,
        "reconciliationId",
    ]

    def __init__(self, manifest=None, reconciliation_id=None):
        super().__init__()
        self.manifest = manifest
        self.reconciliation_id = reconciliation_id

    def format(self, record):
        if self.reconciliation_id:
            record.reconciliationId = self.reconciliation_id

        resource = getattr(record, "resource", None) or self.manifest
        if resource:
            record.kind = resource.get("kind")
            metadata = resource.get("metadata") or {}
            for attr, key in _METADATA_FIELDS.items():
                setattr(record, attr, metadata.get(key))

        return super().format(record)
