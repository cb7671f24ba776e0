# =====================================================
# FILE: signdesk/models/company.py
# Owning organization of a subscription agreement
# =====================================================

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from signdesk.core.database import Base


class Company(Base):
    """
    Company/Organization Model
    Maintained by the surrounding product; contracts only read it.
    """
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_name = Column(String(255), nullable=False)
    org_number = Column(String(100), unique=True)
    address = Column(Text)
    email = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<Company {self.company_name}>"
