"""
modsbot - moderation and utility bot for a Discord community.

Core Components:

- **Gateway**: a raw gateway session with heartbeat, resume and reconnect
  backoff, decoding dispatch frames into typed events
- **Dispatcher**: single consumer of the event queue feeding a bounded
  worker pool
- **Commands**: prefix commands for tags, crate lookups, moderation and the
  code-of-conduct role gate, behind a role-based permission model
- **Storage**: a single aiosqlite connection holding tags, reaction-role
  bindings and temporary bans

Usage:
    from modsbot.main import main
    main()
"""
