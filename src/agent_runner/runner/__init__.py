"""Agent event runner: claim -> resolve agent -> reason -> act -> finalize.

The queue lives in the same SQLite database as the tenant side-effect tables,
so a claim, a run audit row and the tool effects all go through one store.
Polling is left to an external scheduler (cron, systemd timer, ``run loop``);
each ``run_once`` processes at most one event and several runner processes
coordinate only through the atomic claim on ``ai_events``.
"""
