"""DESeq2 wrapper using rpy2 for size factors, model fitting and contrasts."""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pandas as pd

try:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.packages import importr
    from rpy2.robjects.conversion import localconverter
    RPY2_AVAILABLE = True
except ImportError:
    RPY2_AVAILABLE = False
    logging.warning("rpy2 not available. DESeq2 analysis will not work.")
except (RuntimeError, OSError, ValueError) as e:
    # rpy2 is installed but no usable R was found
    RPY2_AVAILABLE = False
    logging.warning(f"R could not be initialized ({e}). DESeq2 analysis will not work.")

from .models import Contrast, FittedModel


logger = logging.getLogger(__name__)


class DESeq2Error(Exception):
    """Exception for DESeq2-related errors."""
    pass


_RELEVEL = """
function(dds, factor, ref) {
    dds[[factor]] <- stats::relevel(dds[[factor]], ref = ref)
    dds
}
"""

_REFERENCE_LEVEL = """
function(dds, factor) levels(dds[[factor]])[1]
"""


class DESeq2Wrapper:
    """Wrapper for DESeq2 normalization, model fitting and contrast extraction."""

    def __init__(self, shrink_method: Optional[str] = "apeglm"):
        """
        Initialize DESeq2 wrapper and check the R environment.

        Args:
            shrink_method: lfcShrink estimator; its R package must be installed.
                ``None`` skips the check.
        """
        if not RPY2_AVAILABLE:
            raise DESeq2Error("rpy2 is not installed. Please install it with: pip install rpy2")

        self.shrink_method = shrink_method
        required = ['DESeq2', 'BiocGenerics']
        if shrink_method in ('apeglm', 'ashr'):
            required.append(shrink_method)

        self._check_r_packages(required)
        self._load_r_packages()

    def _check_r_packages(self, required_packages: List[str]):
        """Check if required R packages are installed."""
        utils = importr('utils')
        base = importr('base')

        installed = base.rownames(utils.installed_packages())

        missing = [pkg for pkg in required_packages if pkg not in installed]

        if missing:
            error_msg = (
                f"Required R packages not found: {', '.join(missing)}\n"
                "Please install them in R using:\n"
                "  if (!require('BiocManager', quietly = TRUE))\n"
                "      install.packages('BiocManager')\n"
                f"  BiocManager::install(c({', '.join(repr(p) for p in missing)}))"
            )
            raise DESeq2Error(error_msg)

    def _load_r_packages(self):
        """Load required R packages and helper functions."""
        try:
            self.deseq2 = importr('DESeq2')
            self.biocgenerics = importr('BiocGenerics')
            self.base = importr('base')
            self._relevel = ro.r(_RELEVEL)
            self._reference_level = ro.r(_REFERENCE_LEVEL)
            logger.info("Successfully loaded DESeq2")
        except Exception as e:
            raise DESeq2Error(f"Failed to load R packages: {str(e)}")

    def _convert_to_r_matrix(self, df: pd.DataFrame):
        """Convert pandas DataFrame to R integer matrix."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            r_df = ro.conversion.py2rpy(df.astype(int))

        r_matrix = self.base.as_matrix(r_df)

        r_matrix.rownames = ro.StrVector([str(i) for i in df.index])
        r_matrix.colnames = ro.StrVector([str(c) for c in df.columns])

        return r_matrix

    def _convert_to_r_dataframe(self, df: pd.DataFrame):
        """Convert pandas DataFrame to R DataFrame."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            r_df = ro.conversion.py2rpy(df)
        return r_df

    def _convert_from_r_dataframe(self, r_obj) -> pd.DataFrame:
        """Convert an R data.frame-coercible object to pandas, keeping row names as index."""
        r_df = self.base.as_data_frame(r_obj)
        with localconverter(ro.default_converter + pandas2ri.converter):
            pd_df = ro.conversion.rpy2py(r_df)
        pd_df = pd.DataFrame(pd_df)
        pd_df.index = [str(name) for name in self.base.rownames(r_obj)]
        return pd_df

    def create_dataset(
        self,
        counts: pd.DataFrame,
        design: pd.DataFrame,
        factor: str = "sample"
    ):
        """
        Create DESeqDataSet object.

        Args:
            counts: Count matrix (genes x samples)
            design: Sample design indexed by sample
            factor: Design column used in the formula ``~factor``

        Returns:
            DESeqDataSet R object
        """
        formula = f"~{factor}"
        logger.info(f"Creating DESeqDataSet with design: {formula}")

        # Ensure sample order matches
        col_data = design.loc[counts.columns, [factor]].copy()
        col_data[factor] = pd.Categorical(
            col_data[factor], categories=sorted(col_data[factor].unique())
        )

        count_matrix = self._convert_to_r_matrix(counts)
        r_col_data = self._convert_to_r_dataframe(col_data)

        try:
            dds = self.deseq2.DESeqDataSetFromMatrix(
                countData=count_matrix,
                colData=r_col_data,
                design=ro.Formula(formula)
            )
            logger.info(f"Created DESeqDataSet with {counts.shape[0]} genes and {counts.shape[1]} samples")
            return dds
        except Exception as e:
            raise DESeq2Error(f"Failed to create DESeqDataSet: {str(e)}")

    def estimate_size_factors(self, dds):
        """Return ``dds`` with size factors estimated."""
        try:
            return self.deseq2.estimateSizeFactors(dds)
        except Exception as e:
            raise DESeq2Error(f"Failed to estimate size factors: {str(e)}")

    def size_factors(self, dds) -> pd.Series:
        """Per-sample size factors as a Series indexed by sample."""
        sf = self.biocgenerics.sizeFactors(dds)
        if sf is ro.NULL:
            raise DESeq2Error("Size factors have not been estimated")
        return pd.Series(
            [float(v) for v in sf],
            index=[str(n) for n in self.base.colnames(dds)],
            name='size_factor'
        )

    def normalized_counts(self, dds) -> pd.DataFrame:
        """
        Get size-factor normalized counts from DESeqDataSet.

        Returns:
            DataFrame with gene IDs as index and samples as columns
        """
        try:
            norm_counts = self.biocgenerics.counts(dds, normalized=True)
            return self._convert_from_r_dataframe(norm_counts)
        except Exception as e:
            raise DESeq2Error(f"Failed to get normalized counts: {str(e)}")

    def reference_level(self, dds, factor: str) -> str:
        return str(self._reference_level(dds, factor)[0])

    def fit(self, dds, factor: str = "sample", reference: Optional[str] = None) -> FittedModel:
        """
        Run DESeq2 (dispersions, GLM fit, Wald test).

        Args:
            dds: DESeqDataSet object
            factor: Design factor
            reference: Reference level to set before fitting; keeps the
                current one when omitted

        Returns:
            FittedModel snapshot
        """
        if reference is not None:
            dds = self._relevel(dds, factor, reference)

        reference = self.reference_level(dds, factor)
        logger.info(f"Running DESeq2 analysis (reference level '{reference}')...")

        try:
            dds = self.deseq2.DESeq(dds)
        except Exception as e:
            error_msg = str(e)
            if "full rank" in error_msg.lower() or "rank deficient" in error_msg.lower():
                raise DESeq2Error(
                    "Design matrix is rank deficient. This usually means:\n"
                    "  - Too few replicates per group\n"
                    "  - A group label that no sample carries"
                )
            raise DESeq2Error(f"DESeq2 analysis failed: {error_msg}")

        logger.info("DESeq2 analysis completed successfully")
        return FittedModel(dds=dds, factor=factor, reference=reference)

    def relevel(self, model: FittedModel, reference: str) -> FittedModel:
        """Refit ``model`` against a different reference level, returning a new snapshot."""
        if reference == model.reference:
            return model
        logger.info(f"Releveling '{model.factor}' from '{model.reference}' to '{reference}'")
        return self.fit(model.dds, model.factor, reference=reference)

    def results_names(self, model: FittedModel) -> List[str]:
        return [str(n) for n in self.deseq2.resultsNames(model.dds)]

    def results(
        self,
        model: FittedModel,
        contrast: Contrast,
        alpha: float = 0.05
    ) -> Tuple[object, pd.DataFrame]:
        """
        Wald-test results for ``contrast``.

        Returns:
            Tuple of (R results object, DataFrame indexed by gene ID)
        """
        logger.info(f"Extracting results for {contrast.name} (alpha={alpha})")
        try:
            res = self.deseq2.results(
                model.dds,
                contrast=ro.StrVector(contrast.as_r_contrast()),
                alpha=alpha
            )
            return res, self._convert_from_r_dataframe(res)
        except Exception as e:
            raise DESeq2Error(f"Failed to extract results for {contrast.name}: {str(e)}")

    def lfc_shrink(
        self,
        model: FittedModel,
        contrast: Contrast,
        res,
        method: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Shrink log2 fold changes of ``res`` with an empirical-Bayes estimator.

        The contrast's coefficient must exist in the model, i.e. the
        denominator must be the model's reference level.
        """
        method = method or self.shrink_method or "apeglm"
        coef = contrast.coefficient
        names = self.results_names(model)
        if coef not in names:
            raise DESeq2Error(
                f"Coefficient '{coef}' not in model (reference level '{model.reference}'). "
                f"Available: {', '.join(names)}"
            )

        logger.info(f"Shrinking log2 fold changes for {coef} ({method})")
        try:
            shrunk = self.deseq2.lfcShrink(model.dds, coef=coef, res=res, type=method)
            return self._convert_from_r_dataframe(shrunk)
        except Exception as e:
            raise DESeq2Error(f"lfcShrink failed for {coef}: {str(e)}")

    def save_model(self, model: FittedModel, path: Union[str, Path]):
        """Serialize the DESeqDataSet with ``saveRDS``."""
        try:
            self.base.saveRDS(model.dds, file=str(path))
        except Exception as e:
            raise DESeq2Error(f"Failed to save model to {path}: {str(e)}")
        logger.info(f"Saved fitted model to {path}")

    def load_model(self, path: Union[str, Path], factor: str = "sample") -> FittedModel:
        """Reload a DESeqDataSet written by :meth:`save_model`."""
        try:
            dds = self.base.readRDS(str(path))
        except Exception as e:
            raise DESeq2Error(f"Failed to read model from {path}: {str(e)}")
        return FittedModel(dds=dds, factor=factor, reference=self.reference_level(dds, factor))
