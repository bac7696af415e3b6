"""Helpers shared by the state package: pod predicates, pod lookups, nodeclaim resolution."""
