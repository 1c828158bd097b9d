"""clusterwatch — telemetry aggregation and operational-alerting engine."""
