# Ranking tables register on the application's Base so init_db() creates them
# together with everything else on db.Base.metadata
from db import Base

__all__ = ["Base"]
