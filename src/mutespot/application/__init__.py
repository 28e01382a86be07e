"""Application layer: enforcement services, plan cache and workers."""
