import logging
import os

from campaign_engine import create_app

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()

if __name__ == "__main__":
    host = os.getenv("FLASK_HOST", "0.0.0.0")
    port = int(os.getenv("FLASK_PORT", "5000"))
    debug = os.getenv("CAMPAIGN_ENGINE_ENV", "dev") == "dev"

    # The reloader would start a second scheduler in the child process
    app.run(host=host, port=port, debug=debug, use_reloader=False)
