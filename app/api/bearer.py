from fastapi.security import HTTPBearer

# HTTP Bearer authentication scheme for station operators
bearer_operator = HTTPBearer(scheme_name="Operator HTTPBearer")
