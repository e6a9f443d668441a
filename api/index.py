from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from indexer.api import create_app

# No background scheduler here; cycles run through POST /api/sync from a cron job.
app = create_app(run_scheduler=False)

handler = Mangum(app, lifespan="off")
