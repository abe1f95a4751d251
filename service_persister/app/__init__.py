"""
Persister service for the Request Pipeline.

Drains the success queue in batches of at most five and writes each item
into the record store:

- app.consumer: ``BatchConsumer`` (acknowledge only after a durable write)
- app.mapping: outcome payload to ``Record`` mapping
- app.persistence: ``RecordStore`` contract with memory and PostgreSQL backends
- app.main: FastAPI wrapper running the consumer with health and read routes
"""
