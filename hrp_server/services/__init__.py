# Service layer for hrp-server
# - discovery:      on-demand device scans, robot/controller lists and path maps
# - connections:    bind/unbind lifecycle, one device per connection
# - control_loop:   per-connection controller -> robot -> publisher ticks
# - dispatcher:     command table shared by the local and remote consoles
# - remote_console: ZeroMQ PAIR front-end
