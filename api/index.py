from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from staking_pool.api import app

app.root_path = "/api"

handler = Mangum(app, lifespan="off")
