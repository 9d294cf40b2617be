"""Registry Server Reconciler (RSR).

Keeps a catalog registry server converged to its declared image:
 - desired service/workload specs derived from a CatalogSource
 - create/replace of drifted workloads through an object store
 - opportunistic digest probing for mutable image tags
 - storage-version migration decisions for changed CRDs
"""
