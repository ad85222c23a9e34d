from sqlalchemy import BigInteger, Column, Date, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from vhostlog.core.database import Base


class Traffic(Base):
    __tablename__ = "traffic"
    __table_args__ = (UniqueConstraint("vhosts_id", "date", name="uq_traffic_vhost_date"),)

    id = Column(Integer, primary_key=True, index=True)
    vhosts_id = Column(Integer, ForeignKey("vhosts.id"), nullable=False, index=True)
    bytes = Column(BigInteger, nullable=False, default=0)
    date = Column(Date, nullable=False, index=True)

    vhost = relationship("Vhost", back_populates="traffic")

    def __repr__(self):
        return f"<Traffic(vhosts_id={self.vhosts_id}, date={self.date}, bytes={self.bytes})>"
