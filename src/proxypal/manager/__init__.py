"""Supervision core and daemon of proxypal.

- process.py: Child process handle (spawn, output lines, terminate)
- proxy.py: Proxy engine supervisor
- tunnel_clients.py / tunnel.py: Tunnel clients and the connection state machine
- registry.py: Connection registry (single source of truth for tunnels)
- oauth.py / credentials.py: Provider account linking
- events.py: Status event bus
- control.py: Command surface used by the API routes and CLI
- daemon/: Daemon process (PID file, UDS API server, logging)
- routes/: Control API
"""
