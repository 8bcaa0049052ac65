import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ticketing.models import Base
from ticketing.models.branch import Branch, BranchUser
from ticketing.models.partner import Category, Partner, PartnerCategory
from ticketing.models.user import User


NOW = datetime.datetime(2026, 10, 18, 9, 0, tzinfo=datetime.timezone.utc)


def make_session():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def naive(dt: datetime.datetime) -> datetime.datetime:
    # SQLite returns naive UTC datetimes.
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def add_user(db, *, name: str, email: str, user_type: str, partner_id=None) -> User:
    user = User(name=name, email=email, user_type=user_type, partner_id=partner_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_category(db, name: str = "Car Wash") -> Category:
    category = Category(name=name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def add_partner(db, name: str, *, category_ids=(), is_active: bool = True) -> Partner:
    partner = Partner(name=name, is_active=is_active, status="active" if is_active else "inactive")
    db.add(partner)
    db.flush()
    for category_id in category_ids:
        db.add(PartnerCategory(partner_id=partner.id, category_id=category_id))
    db.commit()
    db.refresh(partner)
    return partner


def add_branch(db, partner: Partner, name: str, lat: float, lng: float, *, radius_km=10.0, user=None) -> Branch:
    branch = Branch(partner_id=partner.id, name=name, lat=lat, lng=lng, radius_km=radius_km)
    db.add(branch)
    db.flush()
    if user is not None:
        db.add(BranchUser(branch_id=branch.id, user_id=user.id, role="branch_manager"))
    db.commit()
    db.refresh(branch)
    return branch
