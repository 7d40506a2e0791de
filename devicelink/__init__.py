"""devicelink — relay broker between embedded devices and user frontends.

Components:
  - Registry: per-connection bookkeeping and outbound queues
  - Directory: device and frontend session state
  - Broker: pairing protocol, fan-out and close reconciliation
  - Supervisor: device timeout and frontend ping sweeps
  - Router: JSON message dispatch
"""
