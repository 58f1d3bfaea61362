from fastapi_users_db_sqlalchemy import SQLAlchemyBaseUserTableUUID

from postop_monitor.db import Base


class Clinician(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "clinicians"
