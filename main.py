from app.main import ORCHESTRATOR, app
from app.lookup import config
from app.lookup.scheduler import PeriodicTrigger

if __name__ == "__main__":
    # Importing app.main initialises directories and schema. The periodic
    # trigger lives here so WSGI imports and tests do not start cycles.
    if config.ENABLE_SCHEDULER:
        PeriodicTrigger(ORCHESTRATOR).start()
    app.run(host="0.0.0.0", port=config.PORT)
