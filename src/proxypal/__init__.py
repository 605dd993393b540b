"""ProxyPal: desktop control plane for a local AI-proxy engine.

Supervises the proxy engine process, remote-access tunnels (SSH and
cloudflared) and provider OAuth account linking.
"""

__version__ = "0.1.0"
