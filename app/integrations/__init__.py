"""app.integrations — External service gateway modules.

Every collaborator the notice board does not own (file storage today)
is reached through a gateway in this package, never by touching the
filesystem or network directly from services or blueprints.

Current gateways:
  storage_gateway.LocalObjectStore — bucket/path object store on local disk
"""
