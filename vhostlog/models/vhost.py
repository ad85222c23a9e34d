from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from vhostlog.core.database import Base


class Vhost(Base):
    __tablename__ = "vhosts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)

    traffic = relationship("Traffic", back_populates="vhost")

    def __repr__(self):
        return f"<Vhost(id={self.id}, name='{self.name}')>"
