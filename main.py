import logging
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from auth import (
    SESSION_COOKIE,
    SessionContext,
    load_session,
    session_max_age_seconds,
    sign_session,
)
from chat import ChatService
from config import get_settings
from database import get_db, init_db
from gamification import GamificationService
from models import (
    Account,
    Category,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from periods import local_today, month_key, resolve_period
from schemas import (
    AccountIn,
    AccountUpdate,
    BillPaymentIn,
    BudgetIn,
    CategoryIn,
    CategoryUpdate,
    ChatIn,
    LoginIn,
    MemberIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
    WebhookTransactionIn,
)
from services import (
    AccountService,
    BillService,
    BudgetService,
    CategoryService,
    DashboardService,
    IngestService,
    InsightsService,
    InstallmentPurchase,
    NotFound,
    TransactionFilters,
    TransactionService,
    UserService,
)

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Family Finance")


@app.on_event("startup")
def startup_event():
    init_db()


def raise_http(exc: ValueError) -> NoReturn:
    status_code = 404 if isinstance(exc, NotFound) else 400
    raise HTTPException(status_code=status_code, detail=str(exc)) from exc


def current_session(request: Request) -> SessionContext:
    ctx = load_session(request.cookies.get(SESSION_COOKIE))
    if ctx is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return ctx


def admin_session(ctx: SessionContext = Depends(current_session)) -> SessionContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Only family admins can do this")
    return ctx


def session_for(user: User) -> SessionContext:
    return SessionContext(
        user_id=user.id,
        family_id=user.family_id,
        role=user.role,
        name=user.name,
        email=user.email,
    )


def set_session_cookie(response: Response, ctx: SessionContext) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        sign_session(ctx),
        max_age=session_max_age_seconds(),
        httponly=True,
        samesite="lax",
    )


def serialize_user(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "points": user.points,
        "streak": user.streak,
    }


def serialize_category(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "color": category.color,
    }


def serialize_account(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "limit_cents": account.limit_cents,
        "closing_day": account.closing_day,
        "due_day": account.due_day,
        "color": account.color,
        "icon": account.icon,
    }


def serialize_transaction(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "amount_cents": txn.amount_cents,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "status": txn.status.value,
        "source": txn.source.value,
        "category": serialize_category(txn.category) if txn.category else None,
        "account_id": txn.account_id,
        "user_id": txn.user_id,
        "billing_month": month_key(txn.billing_month) if txn.billing_month else None,
        "is_installment": txn.is_installment,
        "installment_group_id": txn.installment_group_id,
        "installment_number": txn.installment_number,
        "total_installments": txn.total_installments,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/auth/register")
def api_register(payload: RegisterIn, response: Response, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(payload)
    except ValueError as exc:
        raise_http(exc)
    set_session_cookie(response, session_for(user))
    return {"user": serialize_user(user), "family_id": user.family_id}


@app.post("/api/auth/login")
def api_login(payload: LoginIn, response: Response, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid e-mail or password")
    gamification = GamificationService(db, user.family_id)
    today = local_today()
    if user.last_login_date != today:
        gamification.award_points(user.id, "DAILY_LOGIN")
    gamification.update_streak(user.id, today)
    gamification.check_and_award_medals(user.id)
    db.commit()
    set_session_cookie(response, session_for(user))
    logging.info(f"login: user_id={user.id} family_id={user.family_id}")
    return {"user": serialize_user(user)}


@app.post("/api/auth/logout")
def api_logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"success": True}


@app.get("/api/auth/session")
def api_session(ctx: SessionContext = Depends(current_session)):
    return {
        "user_id": ctx.user_id,
        "family_id": ctx.family_id,
        "role": ctx.role.value,
        "name": ctx.name,
        "email": ctx.email,
    }


@app.get("/api/family")
def api_family(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    try:
        family = UserService(db).family(ctx.family_id)
    except ValueError as exc:
        raise_http(exc)
    return {
        "id": family.id,
        "name": family.name,
        "members": [serialize_user(user) for user in family.users],
    }


@app.post("/api/family")
def api_add_member(
    payload: MemberIn,
    ctx: SessionContext = Depends(admin_session),
    db: Session = Depends(get_db),
):
    try:
        user = UserService(db).add_member(ctx.family_id, payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_user(user)


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    params = request.query_params
    try:
        period = resolve_period(params.get("period"), params.get("start"), params.get("end"))
        filters = TransactionFilters(
            type=TransactionType(params["type"]) if params.get("type") else None,
            category_id=int(params["category_id"]) if params.get("category_id") else None,
            status=TransactionStatus(params["status"]) if params.get("status") else None,
            period=period,
            installment_group_id=params.get("installment_group_id"),
        )
        limit = min(max(int(params.get("limit", "100")), 1), 100)
    except ValueError as exc:
        raise_http(exc)
    items = TransactionService(db, ctx.family_id).list(filters, limit=limit)
    return {"items": [serialize_transaction(txn) for txn in items]}


@app.post("/api/transactions")
def api_create_transaction(
    payload: TransactionIn,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, ctx.family_id, ctx.user_id)
    try:
        result = service.create(payload)
    except ValueError as exc:
        raise_http(exc)
    if isinstance(result, InstallmentPurchase):
        return {
            "message": result.message,
            "installment_group_id": result.group_id,
            "transactions": [serialize_transaction(txn) for txn in result.transactions],
        }
    return serialize_transaction(result)


@app.put("/api/transactions")
def api_update_transaction(
    id: int,
    payload: TransactionUpdate,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, ctx.family_id, ctx.user_id).update(id, payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_transaction(txn)


@app.delete("/api/transactions")
def api_delete_transaction(
    id: Optional[int] = None,
    installment_group_id: Optional[str] = None,
    cancel_from: int = 1,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, ctx.family_id, ctx.user_id)
    try:
        if installment_group_id:
            cancelled = service.cancel_installment_group(installment_group_id, cancel_from)
            return {"success": True, "cancelled": cancelled}
        if id is None:
            raise ValueError("Transaction id or installment_group_id is required")
        service.delete(id)
    except ValueError as exc:
        raise_http(exc)
    return {"success": True}


@app.get("/api/accounts")
def api_accounts(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    rows = AccountService(db, ctx.family_id).list_all(local_today())
    items = []
    for row in rows:
        item = serialize_account(row.pop("account"))
        item.update(row)
        items.append(item)
    return {"items": items}


@app.post("/api/accounts")
def api_create_account(
    payload: AccountIn,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, ctx.family_id).create(payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_account(account)


@app.put("/api/accounts/{account_id}")
def api_update_account(
    account_id: int,
    payload: AccountUpdate,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, ctx.family_id).update(account_id, payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_account(account)


@app.delete("/api/accounts/{account_id}")
def api_delete_account(
    account_id: int,
    ctx: SessionContext = Depends(admin_session),
    db: Session = Depends(get_db),
):
    try:
        AccountService(db, ctx.family_id).delete(account_id)
    except ValueError as exc:
        raise_http(exc)
    return {"success": True}


@app.get("/api/accounts/{account_id}/bill")
def api_bill(
    account_id: int,
    month: Optional[str] = None,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        bill = BillService(db, ctx.family_id).bill(account_id, month)
    except ValueError as exc:
        raise_http(exc)
    bill["account"] = serialize_account(bill["account"])
    bill["due_date"] = bill["due_date"].isoformat()
    bill["transactions"] = [serialize_transaction(txn) for txn in bill["transactions"]]
    return bill


@app.post("/api/accounts/{account_id}/bill")
def api_pay_bill(
    account_id: int,
    payload: BillPaymentIn,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    service = BillService(db, ctx.family_id, ctx.user_id)
    try:
        return service.pay(account_id, payload.month, payload.from_account_id)
    except ValueError as exc:
        raise_http(exc)


@app.get("/api/categories")
def api_categories(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    categories = CategoryService(db, ctx.family_id).list_all()
    return {"items": [serialize_category(category) for category in categories]}


@app.post("/api/categories")
def api_create_category(
    payload: CategoryIn,
    ctx: SessionContext = Depends(admin_session),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, ctx.family_id).create(payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_category(category)


@app.put("/api/categories/{category_id}")
def api_update_category(
    category_id: int,
    payload: CategoryUpdate,
    ctx: SessionContext = Depends(admin_session),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, ctx.family_id).update(category_id, payload)
    except ValueError as exc:
        raise_http(exc)
    return serialize_category(category)


@app.delete("/api/categories/{category_id}")
def api_delete_category(
    category_id: int,
    ctx: SessionContext = Depends(admin_session),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, ctx.family_id).delete(category_id)
    except ValueError as exc:
        raise_http(exc)
    return {"success": True}


@app.get("/api/budgets")
def api_budgets(
    month: Optional[str] = None,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        items = BudgetService(db, ctx.family_id).list_for_month(
            month or month_key(local_today())
        )
    except ValueError as exc:
        raise_http(exc)
    return {"items": items}


@app.post("/api/budgets")
def api_upsert_budget(
    payload: BudgetIn,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, ctx.family_id).upsert(payload)
    except ValueError as exc:
        raise_http(exc)
    return {
        "id": budget.id,
        "month": budget.month,
        "category_id": budget.category_id,
        "limit_cents": budget.limit_cents,
    }


@app.delete("/api/budgets/{budget_id}")
def api_delete_budget(
    budget_id: int,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, ctx.family_id).delete(budget_id)
    except ValueError as exc:
        raise_http(exc)
    return {"success": True}


@app.get("/api/dashboard")
def api_dashboard(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    return DashboardService(db, ctx.family_id).summary(local_today())


@app.get("/api/cfo")
def api_cfo(ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)):
    insights = InsightsService(db, ctx.family_id).generate(local_today())
    return {"insights": [insight.model_dump(exclude_none=True) for insight in insights]}


@app.get("/api/chat")
def api_chat_history(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    messages = ChatService(db, ctx.family_id, ctx.user_id).history()
    return {
        "items": [
            {
                "id": message.id,
                "content": message.content,
                "response": message.response,
                "created_at": message.created_at.isoformat(),
            }
            for message in messages
        ]
    }


@app.post("/api/chat")
def api_chat(
    payload: ChatIn,
    ctx: SessionContext = Depends(current_session),
    db: Session = Depends(get_db),
):
    message = ChatService(db, ctx.family_id, ctx.user_id).send(payload.content)
    return {"id": message.id, "response": message.response}


@app.get("/api/gamification")
def api_gamification(
    ctx: SessionContext = Depends(current_session), db: Session = Depends(get_db)
):
    try:
        return GamificationService(db, ctx.family_id).overview(ctx.user_id)
    except ValueError as exc:
        raise_http(exc)


@app.post("/api/webhooks/transactions")
def api_webhook_transaction(
    payload: WebhookTransactionIn,
    x_webhook_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    secret = get_settings().webhook_secret
    if not secret or x_webhook_secret != secret:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")
    user = db.get(User, payload.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        txn, parsed = IngestService(db, user.family_id, user.id).ingest_email(
            payload.content
        )
    except ValueError as exc:
        raise_http(exc)
    logging.info(
        f"webhook_transaction: family_id={user.family_id} transaction_id={txn.id}"
    )
    return {
        "success": True,
        "transaction": serialize_transaction(txn),
        "confidence": parsed.confidence,
    }
