"""Generation pipeline services.

Leaves first: storage gateway and guard, reference resolver, credit ledger,
providers and router, job drivers, output persister, guards, job store,
and the orchestrator that wires them together.
"""
