from sqlalchemy import Column, Integer, String, DateTime, func
from . import Base

DICEBEAR_URL = 'https://api.dicebear.com/7.x/avataaars/svg?seed={seed}'


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(150), nullable=False)
    last_name = Column(String(150), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'

    @property
    def avatar_url(self) -> str:
        return DICEBEAR_URL.format(seed=self.first_name)
