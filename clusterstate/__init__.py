"""
Cluster state cache for a node autoscaler.

Modules:
- apis: NodeClaim model and well-known labels, taints and conditions
- resources: resource list arithmetic and pod request/limit totals
- scheduling: host port and volume usage ledgers, taint matching
- state: StateNode, the concurrent Cluster store, scheduling-pause taints
- utils: pod predicates, pod lookups, nodeclaim resolution and event mapping
- index: provider id / label index over Nodes and NodeClaims
- api: read-only REST surface over the store
"""
