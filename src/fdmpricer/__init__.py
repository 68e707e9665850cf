# fdmpricer: finite-difference PDE pricing engine
# Public API

# Contracts, curves and model parameters
from .core import OptionSpec, CALL, PUT, EUROPEAN, AMERICAN, BERMUDAN
from .curves import YieldCurve, FlatForward, ZeroCurve
from .processes import ExtendedOrnsteinUhlenbeckProcess, ExtOUWithJumpsProcess, HestonProcess, CIRProcess
from .exceptions import FdmError, ConfigurationError, NumericalError, SolverStateError

# Meshes
from .layout import Layout
from .meshers import (
    Fdm1dMesher, Uniform1dMesher, Concentrating1dMesher, Predefined1dMesher,
    CEV1dMesher, BlackScholesMesher, HestonVarianceMesher, CIRRateMesher,
    OrnsteinUhlenbeck1dMesher, ExponentialJump1dMesher, MesherComposite,
)

# Operators
from .operators import (
    LinearOp, TripleBandLinearOp, FirstDerivativeOp, SecondDerivativeOp,
    NinePointLinearOp, SecondOrderMixedDerivativeOp,
)
from .composite import LinearOpComposite, OperatorSum
from .models import (
    CEVOp, BlackScholesOp, ExtendedOrnsteinUhlenbeckOp, ExtOUJumpOp, HestonOp, BlackScholesCIROp,
)

# Boundaries and step conditions
from .boundary import (
    DirichletBoundary, TimeDependentDirichletBoundary, DiscountDirichletBoundary,
    NeumannBoundary, LinearExtrapolationBoundary, BoundaryConditionSet,
)
from .conditions import (
    AmericanStepCondition, BermudanStepCondition, KnockOutStepCondition,
    SnapshotCondition, FunctionStepCondition, StepConditionComposite,
)

# Time stepping
from .time_grid import TimeGrid
from .schemes import SchemeDesc, make_scheme
from .solver import BackwardSolver, SolverDesc, FdmSolver

# Engines and wrappers
from .engines import (
    fd_black_scholes_vanilla, fd_cev_vanilla, fd_ext_ou_jump_vanilla, fd_heston_vanilla,
    fd_black_scholes_cir_vanilla,
)
from .pde import fd_price, fd_price_barrier, fd_greeks, fd_price_local_vol
from .black_scholes import price as bs_price, greeks as bs_greeks

# Risk and validation
from .risk import bump_greeks
from .validation import convergence_analysis

__all__ = [
    # Contracts
    "OptionSpec", "CALL", "PUT", "EUROPEAN", "AMERICAN", "BERMUDAN",
    "YieldCurve", "FlatForward", "ZeroCurve",
    "ExtendedOrnsteinUhlenbeckProcess", "ExtOUWithJumpsProcess", "HestonProcess", "CIRProcess",
    "FdmError", "ConfigurationError", "NumericalError", "SolverStateError",
    # Meshes
    "Layout", "Fdm1dMesher", "Uniform1dMesher", "Concentrating1dMesher",
    "Predefined1dMesher", "CEV1dMesher", "BlackScholesMesher", "HestonVarianceMesher", "CIRRateMesher",
    "OrnsteinUhlenbeck1dMesher", "ExponentialJump1dMesher", "MesherComposite",
    # Operators
    "LinearOp", "TripleBandLinearOp", "FirstDerivativeOp", "SecondDerivativeOp",
    "NinePointLinearOp", "SecondOrderMixedDerivativeOp",
    "LinearOpComposite", "OperatorSum",
    "CEVOp", "BlackScholesOp", "ExtendedOrnsteinUhlenbeckOp", "ExtOUJumpOp", "HestonOp",
    "BlackScholesCIROp",
    # Boundaries and conditions
    "DirichletBoundary", "TimeDependentDirichletBoundary", "DiscountDirichletBoundary",
    "NeumannBoundary", "LinearExtrapolationBoundary", "BoundaryConditionSet",
    "AmericanStepCondition", "BermudanStepCondition", "KnockOutStepCondition",
    "SnapshotCondition", "FunctionStepCondition", "StepConditionComposite",
    # Time stepping
    "TimeGrid", "SchemeDesc", "make_scheme", "BackwardSolver", "SolverDesc", "FdmSolver",
    # Engines
    "fd_black_scholes_vanilla", "fd_cev_vanilla", "fd_ext_ou_jump_vanilla", "fd_heston_vanilla",
    "fd_black_scholes_cir_vanilla",
    "fd_price", "fd_price_barrier", "fd_greeks", "fd_price_local_vol",
    "bs_price", "bs_greeks",
    # Risk & validation
    "bump_greeks", "convergence_analysis",
]

__version__ = "0.1.0"
